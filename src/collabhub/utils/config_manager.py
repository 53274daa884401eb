"""Configuration Management System

Hierarchical configuration for the coordination core, validated with Pydantic
and loaded from YAML files and environment variables.

Configuration Hierarchy (highest to lowest precedence):
1. Environment Variables (COLLABHUB_* prefix)
2. Project Configuration ({project}/.collabhub/config.yaml)
3. Global Configuration (~/.collabhub/config.yaml)
4. Hardcoded Defaults

Components accept an explicit ``SystemConfiguration``; the module-level
manager below is only the default source when none is passed.
"""

import logging
import os
import threading
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError
from pydantic.config import ConfigDict

from ..schemas.common_enums import ActivationPolicy
from .exceptions import CollabHubError

# Configure module logger
logger = logging.getLogger(__name__)

CONFIG_DIR_NAME = ".collabhub"
CONFIG_FILE_NAME = "config.yaml"

# ============================================================================
# Exceptions
# ============================================================================

class ConfigurationError(CollabHubError):
    """Base exception for configuration management operations."""
    pass

class ConfigurationValidationError(ConfigurationError):
    """Raised when configuration validation fails."""
    pass

class ConfigurationFileError(ConfigurationError):
    """Raised when configuration file operations fail."""
    pass

# ============================================================================
# Configuration Models
# ============================================================================

class AgentProfile(BaseModel):
    """Default agent registered at bootstrap."""
    model_config = ConfigDict(extra='forbid')

    name: str
    capabilities: List[str] = Field(default_factory=list)
    expertise: List[str] = Field(default_factory=list)
    specializations: List[str] = Field(default_factory=list)


def _default_agents() -> List[AgentProfile]:
    return [
        AgentProfile(
            name="infrastructure",
            capabilities=["performance_monitoring", "resource_optimization", "predictive_scaling", "system_diagnostics"],
            expertise=["cpu_optimization", "memory_management", "network_tuning", "database_optimization"],
            specializations=["real_time_monitoring", "autonomous_scaling", "predictive_analytics"],
        ),
        AgentProfile(
            name="quality",
            capabilities=["agent_assessment", "auto_fixing", "quality_scoring", "performance_analysis"],
            expertise=["ai_diagnostics", "quality_metrics", "improvement_strategies", "error_detection"],
            specializations=["agent_optimization", "quality_assurance", "automated_testing"],
        ),
        AgentProfile(
            name="ux",
            capabilities=["behavior_analysis", "personalization", "ab_testing", "conversion_optimization"],
            expertise=["user_psychology", "interface_design", "engagement_metrics", "user_journeys"],
            specializations=["behavioral_prediction", "personalization_engine", "conversion_optimization"],
        ),
        AgentProfile(
            name="security",
            capabilities=["threat_detection", "vulnerability_assessment", "incident_response", "policy_management"],
            expertise=["cybersecurity", "threat_intelligence", "risk_assessment", "compliance_monitoring"],
            specializations=["real_time_protection", "autonomous_response", "threat_prediction"],
        ),
        AgentProfile(
            name="marketing",
            capabilities=["campaign_optimization", "audience_segmentation", "content_generation", "performance_tracking"],
            expertise=["digital_marketing", "customer_psychology", "content_strategy", "growth_hacking"],
            specializations=["campaign_automation", "audience_intelligence", "content_optimization"],
        ),
        AgentProfile(
            name="financial",
            capabilities=["financial_analysis", "risk_assessment", "budget_optimization", "investment_strategies"],
            expertise=["financial_modeling", "market_analysis", "risk_management", "portfolio_optimization"],
            specializations=["algorithmic_trading", "financial_forecasting", "risk_mitigation"],
        ),
        AgentProfile(
            name="orchestrator",
            capabilities=["system_coordination", "resource_allocation", "decision_making", "optimization_strategies"],
            expertise=["system_architecture", "resource_management", "strategic_planning", "performance_optimization"],
            specializations=["autonomous_coordination", "intelligent_orchestration", "system_optimization"],
        ),
    ]


def _default_team_fallbacks() -> Dict[str, List[str]]:
    return {
        "performance": ["infrastructure", "quality", "orchestrator"],
        "security": ["security", "infrastructure", "orchestrator"],
        "user": ["ux", "marketing", "quality"],
    }


def _default_routing_table() -> Dict[str, List[str]]:
    return {
        "performance_issue": ["infrastructure", "quality", "orchestrator"],
        "security_threat": ["security", "infrastructure", "orchestrator"],
        "user_behavior_insight": ["ux", "marketing", "orchestrator"],
        "quality_concern": ["quality", "infrastructure", "orchestrator"],
        "marketing_opportunity": ["marketing", "ux", "financial"],
        "financial_alert": ["financial", "orchestrator", "marketing"],
        "resource_optimization": ["infrastructure", "orchestrator", "quality"],
        "collaboration_request": ["orchestrator"],
    }


class RegistryConfiguration(BaseModel):
    """Configuration for the agent registry bootstrap."""
    model_config = ConfigDict(validate_assignment=True, extra='forbid')

    bootstrap_default_agents: bool = Field(default=True, description="Register default agents when the registry is empty")
    default_agents: List[AgentProfile] = Field(default_factory=_default_agents)


class HubConfiguration(BaseModel):
    """Configuration for message routing and history."""
    model_config = ConfigDict(validate_assignment=True, extra='forbid')

    history_limit: int = Field(default=1000, ge=1, description="Maximum messages kept in history")
    history_retention_seconds: int = Field(default=24 * 60 * 60, ge=1, description="Messages older than this are pruned")
    inbox_limit: int = Field(default=500, ge=1, description="Maximum delivered messages kept per agent inbox")
    delivery_log_limit: int = Field(default=5000, ge=1, description="Maximum delivery records kept")
    routing_table: Dict[str, List[str]] = Field(default_factory=_default_routing_table)
    escalation_agent: Optional[str] = Field(default="orchestrator", description="Agent that receives a copy of every critical message; None disables")


class KnowledgeConfiguration(BaseModel):
    """Configuration for the knowledge exchange."""
    model_config = ConfigDict(validate_assignment=True, extra='forbid')

    related_depth: int = Field(default=2, ge=1, le=10, description="Default traversal depth for related knowledge")
    retention_days: int = Field(default=30, ge=1, description="Age after which unused items may be pruned")
    notify_on_share: bool = Field(default=True, description="Notify applicable agents when knowledge is shared")


class CollaborationConfiguration(BaseModel):
    """Configuration for sessions and teams."""
    model_config = ConfigDict(validate_assignment=True, extra='forbid')

    activation_policy: ActivationPolicy = Field(default=ActivationPolicy.EXPLICIT)
    session_timeout_seconds: Optional[int] = Field(default=None, ge=1, description="Abandon proposed sessions after this long; None disables")
    coordinator_agent: str = Field(default="orchestrator", description="Agent that sends team invitations")
    consensus_threshold: Optional[float] = Field(default=0.8, ge=0.0, le=1.0, description="Resolve an active session once average decision consensus exceeds this; None disables")
    team_fallbacks: Dict[str, List[str]] = Field(default_factory=_default_team_fallbacks, description="Team suggested for an expertise keyword when no agent matches it")
    default_fallback_team: List[str] = Field(default_factory=lambda: ["orchestrator", "quality"])


class LoggingConfiguration(BaseModel):
    """Configuration for logging and observability."""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True,
        extra='forbid'
    )

    level: str = Field(default="INFO", description="Default log level")
    enable_file_logging: bool = Field(default=False, description="Enable logging to files")
    log_directory: str = Field(default="logs", description="Log file directory")
    enable_structured_logging: bool = Field(default=False, description="Use structured JSON logging")
    max_log_size_mb: int = Field(default=10, ge=1, le=1000, description="Maximum log file size (MB)")
    backup_count: int = Field(default=5, ge=0, le=30, description="Rotated log files to keep")


class SystemConfiguration(BaseModel):
    """Master configuration containing all system settings."""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True,
        extra='forbid'
    )

    config_version: str = Field(default="1.0.0", description="Configuration schema version")

    registry: RegistryConfiguration = Field(default_factory=RegistryConfiguration)
    hub: HubConfiguration = Field(default_factory=HubConfiguration)
    knowledge: KnowledgeConfiguration = Field(default_factory=KnowledgeConfiguration)
    collaboration: CollaborationConfiguration = Field(default_factory=CollaborationConfiguration)
    logging: LoggingConfiguration = Field(default_factory=LoggingConfiguration)

    environment: str = Field(default="development", description="Runtime environment")

# ============================================================================
# Environment Variable Mapping
# ============================================================================

class EnvironmentVariableMapper:
    """Maps environment variables to configuration fields."""

    ENV_MAPPINGS = {
        "COLLABHUB_ENVIRONMENT": "environment",
        "COLLABHUB_LOG_LEVEL": "logging.level",
        "COLLABHUB_LOG_JSON": "logging.enable_structured_logging",
        "COLLABHUB_LOG_TO_FILE": "logging.enable_file_logging",
        "COLLABHUB_LOG_DIRECTORY": "logging.log_directory",
        "COLLABHUB_HISTORY_LIMIT": "hub.history_limit",
        "COLLABHUB_HISTORY_RETENTION_SECONDS": "hub.history_retention_seconds",
        "COLLABHUB_INBOX_LIMIT": "hub.inbox_limit",
        "COLLABHUB_RELATED_DEPTH": "knowledge.related_depth",
        "COLLABHUB_KNOWLEDGE_RETENTION_DAYS": "knowledge.retention_days",
        "COLLABHUB_ACTIVATION_POLICY": "collaboration.activation_policy",
        "COLLABHUB_SESSION_TIMEOUT_SECONDS": "collaboration.session_timeout_seconds",
        "COLLABHUB_COORDINATOR_AGENT": "collaboration.coordinator_agent",
        "COLLABHUB_ESCALATION_AGENT": "hub.escalation_agent",
        "COLLABHUB_BOOTSTRAP_AGENTS": "registry.bootstrap_default_agents",
    }

    BOOLEAN_FIELDS = {
        "logging.enable_structured_logging",
        "logging.enable_file_logging",
        "registry.bootstrap_default_agents",
    }

    @classmethod
    def load_from_environment(cls) -> Dict[str, Any]:
        """Load configuration values from environment variables."""
        env_config: Dict[str, Any] = {}

        for env_var, config_path in cls.ENV_MAPPINGS.items():
            value = os.getenv(env_var)
            if value is not None:
                converted_value = cls._convert_env_value(value, config_path)
                cls._set_nested_value(env_config, config_path, converted_value)
                logger.debug(f"Loaded environment variable: {env_var}={value} -> {config_path}")

        return env_config

    @classmethod
    def _convert_env_value(cls, value: str, config_path: str) -> Any:
        """Convert environment variable string to the field's type.

        Integers are left as strings; Pydantic coerces them during validation.
        """
        if config_path in cls.BOOLEAN_FIELDS:
            return value.lower() in ('true', '1', 'yes', 'on')
        return value

    @classmethod
    def _set_nested_value(cls, config_dict: Dict[str, Any], path: str, value: Any) -> None:
        """Set a value in a nested dictionary using dot notation."""
        keys = path.split('.')
        current = config_dict

        for key in keys[:-1]:
            if key not in current:
                current[key] = {}
            current = current[key]

        current[keys[-1]] = value

# ============================================================================
# Configuration Loading and Management
# ============================================================================

class ConfigurationLoader:
    """Handles loading and parsing of configuration files."""

    @staticmethod
    def load_yaml_file(file_path: Path) -> Dict[str, Any]:
        """Load configuration from a YAML file."""
        if not file_path.exists():
            logger.debug(f"Configuration file not found: {file_path}")
            return {}
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                content = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            logger.error(f"YAML parsing error in {file_path}: {e}")
            raise ConfigurationFileError(f"Invalid YAML syntax in {file_path}: {e}") from e
        except OSError as e:
            logger.error(f"Error loading configuration file {file_path}: {e}")
            raise ConfigurationFileError(f"Failed to load {file_path}: {e}") from e

        if not isinstance(content, dict):
            raise ConfigurationFileError(f"Configuration root in {file_path} must be a mapping")
        logger.debug(f"Loaded configuration from: {file_path}")
        return content

    @staticmethod
    def save_yaml_file(file_path: Path, config_data: Dict[str, Any]) -> None:
        """Save configuration to a YAML file."""
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(file_path, 'w', encoding='utf-8') as f:
                yaml.safe_dump(config_data, f, default_flow_style=False, sort_keys=True)
        except OSError as e:
            logger.error(f"Error saving configuration file {file_path}: {e}")
            raise ConfigurationFileError(f"Failed to save {file_path}: {e}") from e
        logger.info(f"Saved configuration to: {file_path}")

    @staticmethod
    def merge_configurations(*configs: Dict[str, Any]) -> Dict[str, Any]:
        """Merge multiple configuration dictionaries with deep merging."""
        def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
            result = base.copy()

            for key, value in override.items():
                if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                    result[key] = deep_merge(result[key], value)
                else:
                    result[key] = value

            return result

        merged: Dict[str, Any] = {}
        for config in configs:
            merged = deep_merge(merged, config)

        return merged

# ============================================================================
# Main Configuration Manager
# ============================================================================

class ConfigurationManager:
    """
    Singleton configuration manager providing hierarchical configuration with caching.

    Implements the following precedence (highest to lowest):
    1. Environment Variables
    2. Project Configuration (.collabhub/config.yaml in project root)
    3. Global Configuration (~/.collabhub/config.yaml)
    4. Default Values (hardcoded in Pydantic models)
    """

    _instance: Optional['ConfigurationManager'] = None
    _lock = threading.Lock()

    def __new__(cls) -> 'ConfigurationManager':
        """Ensure singleton pattern."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        """Initialize configuration manager (only once due to singleton)."""
        if hasattr(self, '_initialized'):
            return

        self._initialized = True
        self._config: Optional[SystemConfiguration] = None
        self._config_cache_time: float = 0
        self._cache_ttl: float = 300  # seconds
        self._project_root: Optional[Path] = None
        self._global_config_dir: Path = Path.home() / CONFIG_DIR_NAME

        logger.debug("ConfigurationManager initialized")

    def get_config(self, force_reload: bool = False) -> SystemConfiguration:
        """
        Get the current system configuration with caching.

        Args:
            force_reload: Force reload from all sources, ignoring cache

        Returns:
            Complete system configuration
        """
        current_time = time.time()

        if (force_reload or
            self._config is None or
            (current_time - self._config_cache_time) > self._cache_ttl):

            self._config = self._load_configuration()
            self._config_cache_time = current_time

        return self._config

    def reload_configuration(self) -> SystemConfiguration:
        """Force reload configuration from all sources."""
        return self.get_config(force_reload=True)

    def set_project_root(self, project_root: Path) -> None:
        """Set the project root path for project-specific configuration."""
        self._project_root = project_root
        logger.debug(f"Set project root to: {project_root}")
        self.reload_configuration()

    def set_global_config_dir(self, config_dir: Path) -> None:
        """Override where the global configuration file is looked up."""
        self._global_config_dir = config_dir
        self.reload_configuration()

    def update_configuration(self, updates: Dict[str, Any]) -> SystemConfiguration:
        """Apply runtime updates in nested dictionary format."""
        current_dict = self.get_config().model_dump(mode='json')
        merged_dict = ConfigurationLoader.merge_configurations(current_dict, updates)
        new_config = validate_configuration(merged_dict)

        self._config = new_config
        self._config_cache_time = time.time()
        logger.info("Configuration updated successfully")
        return new_config

    def _load_configuration(self) -> SystemConfiguration:
        """Load configuration from all sources with proper precedence.

        A broken file or invalid value raises; silently falling back to
        defaults would hide a misconfigured activation policy or retention.
        """
        logger.debug("Loading configuration from all sources")
        configs_to_merge = []

        global_config = ConfigurationLoader.load_yaml_file(self._global_config_dir / CONFIG_FILE_NAME)
        if global_config:
            configs_to_merge.append(global_config)
            logger.debug("Loaded global configuration")

        if self._project_root:
            project_config_path = self._project_root / CONFIG_DIR_NAME / CONFIG_FILE_NAME
            project_config = ConfigurationLoader.load_yaml_file(project_config_path)
            if project_config:
                configs_to_merge.append(project_config)
                logger.debug("Loaded project configuration")

        env_config = EnvironmentVariableMapper.load_from_environment()
        if env_config:
            configs_to_merge.append(env_config)
            logger.debug("Loaded environment configuration")

        merged_config = ConfigurationLoader.merge_configurations(*configs_to_merge)
        config = validate_configuration(merged_config)
        logger.info("Configuration loaded successfully from all sources")
        return config

# ============================================================================
# Global Configuration Access
# ============================================================================

_config_manager: Optional[ConfigurationManager] = None

def get_config() -> SystemConfiguration:
    """Get the global configuration instance."""
    return get_config_manager().get_config()

def get_config_manager() -> ConfigurationManager:
    """Get the global configuration manager instance."""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigurationManager()
    return _config_manager

def reload_config() -> SystemConfiguration:
    """Force reload the global configuration."""
    return get_config_manager().reload_configuration()

# ============================================================================
# Utility Functions
# ============================================================================

def validate_configuration(config_dict: Dict[str, Any]) -> SystemConfiguration:
    """Validate a configuration dictionary."""
    try:
        return SystemConfiguration(**config_dict)
    except ValidationError as e:
        raise ConfigurationValidationError(f"Configuration validation failed: {e}") from e

def create_default_config_file(file_path: Path) -> None:
    """Create a default configuration file."""
    default_config = SystemConfiguration().model_dump(mode='json')
    ConfigurationLoader.save_yaml_file(file_path, default_config)
    logger.info(f"Created default configuration file: {file_path}")

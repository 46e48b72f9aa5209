from .config import AccessConfig, EnforcementMode, LogLevel, load_config_from_env
from .exceptions import (
    AccessCoreError,
    AccessDeniedError,
    AuthenticationError,
    ConfigurationError,
    MissingTenantError,
    RestrictionValidationError,
    StorageError,
    TenantNotFoundError,
)
from .logging import (
    safe_preview,
    redact_secrets,
    safe_log_value,
    AccessLogFormatter,
    AccessLoggerAdapter,
    setup_logging,
    get_access_logger,
)
from .models import (
    PermissionContext,
    Principal,
    Resource,
    ResourceStatus,
    Restriction,
    Role,
    Visibility,
)
from .permissions import Actions, DenialReason, PermissionMap, Resources
from .cache import PermissionCache
from .resolver import PermissionResolver
from .evaluator import CapabilitySet, ResourceAccessEvaluator
from .gate import AuthorizationGate, GateDecision, Requirement
from .service import AccessService

__all__ = [
    'AccessConfig',
    'EnforcementMode',
    'LogLevel',
    'load_config_from_env',
    'AccessCoreError',
    'AccessDeniedError',
    'AuthenticationError',
    'ConfigurationError',
    'MissingTenantError',
    'RestrictionValidationError',
    'StorageError',
    'TenantNotFoundError',
    'safe_preview',
    'redact_secrets',
    'safe_log_value',
    'AccessLogFormatter',
    'AccessLoggerAdapter',
    'setup_logging',
    'get_access_logger',
    'PermissionContext',
    'Principal',
    'Resource',
    'ResourceStatus',
    'Restriction',
    'Role',
    'Visibility',
    'Actions',
    'DenialReason',
    'PermissionMap',
    'Resources',
    'PermissionCache',
    'PermissionResolver',
    'CapabilitySet',
    'ResourceAccessEvaluator',
    'AuthorizationGate',
    'GateDecision',
    'Requirement',
    'AccessService',
]

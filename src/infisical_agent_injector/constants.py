"""Annotation keys, resource names and defaults shared across the injector."""

# Pod annotations read (and, for the status key, written) by the webhook
ANNOTATION_PREFIX = "org.infisical.com/"

INJECT_ANNOTATION = f"{ANNOTATION_PREFIX}inject"
INJECT_MODE_ANNOTATION = f"{ANNOTATION_PREFIX}inject-mode"
AGENT_CONFIG_MAP_ANNOTATION = f"{ANNOTATION_PREFIX}agent-config-map"
AGENT_STATUS_ANNOTATION = f"{ANNOTATION_PREFIX}agent-status"
CACHING_ENABLED_ANNOTATION = f"{ANNOTATION_PREFIX}agent-cache-enabled"
REVOKE_ON_SHUTDOWN_ANNOTATION = f"{ANNOTATION_PREFIX}agent-revoke-on-shutdown"

CLIENT_MAX_RETRIES_ANNOTATION = f"{ANNOTATION_PREFIX}agent-client-max-retries"
CLIENT_BASE_DELAY_ANNOTATION = f"{ANNOTATION_PREFIX}agent-client-base-delay"
CLIENT_MAX_DELAY_ANNOTATION = f"{ANNOTATION_PREFIX}agent-client-max-delay"

LIMITS_CPU_ANNOTATION = f"{ANNOTATION_PREFIX}agent-limits-cpu"
LIMITS_MEMORY_ANNOTATION = f"{ANNOTATION_PREFIX}agent-limits-memory"
LIMITS_EPHEMERAL_ANNOTATION = f"{ANNOTATION_PREFIX}agent-limits-ephemeral"
REQUESTS_CPU_ANNOTATION = f"{ANNOTATION_PREFIX}agent-requests-cpu"
REQUESTS_MEMORY_ANNOTATION = f"{ANNOTATION_PREFIX}agent-requests-memory"
REQUESTS_EPHEMERAL_ANNOTATION = f"{ANNOTATION_PREFIX}agent-requests-ephemeral"

AGENT_STATUS_INJECTED = "injected"

# Namespaces the webhook never injects into
PROTECTED_NAMESPACES = ("kube-system", "kube-public")

# Agent ConfigMap
CONFIG_MAP_DATA_KEY = "config.yaml"
DEFAULT_INFISICAL_ADDRESS = "https://app.infisical.com"

# Injected containers
INIT_CONTAINER_NAME = "infisical-agent-init"
SIDECAR_CONTAINER_NAME = "infisical-agent"
AGENT_CONTAINER_NAMES = (INIT_CONTAINER_NAME, SIDECAR_CONTAINER_NAME)

LINUX_CONTAINER_IMAGE = "infisical/cli:0.43.32"
WINDOWS_CONTAINER_IMAGE = "infisical/cli:0.43.32-windows-amd64"

# Volumes
WORK_DIR_VOLUME_NAME = "infisical-work-dir"
SECRETS_VOLUME_NAME = "infisical-secrets"
SERVICE_ACCOUNT_MOUNT_MARKER = "serviceaccount"
SERVICE_ACCOUNT_TOKEN_FILE = "token"

# Files written into the agent config directory
AGENT_CONFIG_FILE_NAME = "agent-config.yaml"
IDENTITY_ID_FILE_NAME = "identity-id"
USERNAME_FILE_NAME = "username"
PASSWORD_FILE_NAME = "password"
ACCESS_TOKEN_FILE_NAME = "identity-access-token"
CACHE_DIR_NAME = "cache"

INIT_TIMEOUT_SECONDS = 180

# Trust bootstrap
SERVICE_NAME = "infisical-agent-injector-svc"
WEBHOOK_CONFIG_NAME = "infisical-agent-injector-cfg"
CA_BUNDLE_PATCH_PATH = "/webhooks/0/clientConfig/caBundle"
CERT_VALIDITY_DAYS = 4 * 365
REGISTRATION_ATTEMPTS = 5
REGISTRATION_DELAY_SECONDS = 2.0
DEFAULT_CERT_DIR = "/tmp/tls"
DEFAULT_PORT = 8585
DEFAULT_NAMESPACE = "default"

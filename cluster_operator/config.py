"""Configuration settings for the Managed Cluster Operator."""

# CRD Settings
CRD_GROUP = "verrazzano.oracle.com"
CRD_VERSION = "v1beta1"
CRD_PLURAL = "verrazzanomanagedclusters"
CRD_KIND = "VerrazzanoManagedCluster"

# Target namespace for managed cluster records and secrets
DEFAULT_NAMESPACE = "default"

# Naming
VERRAZZANO_PREFIX = "verrazzano"
MANAGED_CLUSTER_PREFIX = f"{VERRAZZANO_PREFIX}-managed-cluster"
KUBECONFIG_SECRET_KEY = "kubeconfig"

# Labels and values
VERRAZZANO_GROUP = "verrazzano.oracle.com"
K8S_APP_LABEL = "k8s-app"
VERRAZZANO_CLUSTER_LABEL = "verrazzano.cluster"

# Registry ingress secret holding the CA certificate
REGISTRY_NAMESPACE = "cattle-system"
REGISTRY_TLS_SECRET = "tls-rancher-ingress"
CA_CERT_KEY = "ca.crt"

# Registry API
CLUSTERS_API_PATH = "/v3/clusters"
GENERATE_KUBECONFIG_ACTION = "generateKubeconfig"

# Watch settings
WATCH_TIMEOUT_SECONDS = 300
WATCH_ERROR_BACKOFF_SECONDS = 5
CACHE_SYNC_TIMEOUT_SECONDS = 60
POLL_INTERVAL_SECONDS = 30

# Retry settings: 12 attempts roughly 5s apart
RETRY_STEPS = 12
RETRY_DURATION_SECONDS = 5.0
RETRY_FACTOR = 1.0
RETRY_JITTER = 0.1

# HTTP timeouts
TLS_HANDSHAKE_TIMEOUT_SECONDS = 10
RESPONSE_HEADER_TIMEOUT_SECONDS = 10
REQUEST_TIMEOUT_SECONDS = 300

# Proxy environment variables, in lookup order
PROXY_ENV_VARS = ("https_proxy", "HTTPS_PROXY", "http_proxy", "HTTP_PROXY")

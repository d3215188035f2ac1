DEFAULT_CONFIG_FILE = "/usr/local/etc/config.ini"
DEFAULT_CLIENT_MAC = "de:ad:be:ef:de:ad"
BROADCAST_MAC = "ff:ff:ff:ff:ff:ff"

# Loop timing (seconds)
UPNP_DISCOVERY_INTERVAL = 30
UPNP_LISTEN_WINDOW = 10
IPFIX_EXPORT_INTERVAL = 10
RADIUS_AUTH_INTERVAL = 30
RADIUS_ACCT_INTERIM_INTERVAL = 30
RADIUS_RETRY_BACKOFF = 30
DHCP_DEFAULT_RENEW = 30
METRICS_DEFAULT_INTERVAL = 60

# RADIUS transport
RADIUS_AUTH_PORT = 1812
RADIUS_ACCT_PORT = 1813
RADIUS_RETRIES = 3
RADIUS_MAX_PACKET_ERRORS = 2
RADIUS_TIMEOUT = 2.0
RADIUS_DEFAULT_POOL_SIZE = 4

# Shared limiter, messages per second across all protocol tasks
DEFAULT_RATE_LIMIT = 100

# IPFIX
IPFIX_DEFAULT_PORT = 4739
IPFIX_DEFAULT_DESTINATION = "127.0.0.1"

# UPnP / SSDP
SSDP_DEFAULT_ADDR = "239.255.255.250"
SSDP_DEFAULT_PORT = 1900
SSDP_DEFAULT_USER_AGENT = "siemens ag simatic s7"
SSDP_DEFAULT_DEVICE_TYPE = "urn:schemas-upnp-org:device:InternetGatewayDevice:1"

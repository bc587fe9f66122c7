import os

# Path to the configuration file. Can be overriden for tests.
CONFIG_FILE_PATH = os.environ.get( 'UNIBOX_CONFIG_FILE', os.path.expanduser( '~/.unibox' ) )

# Environment variables taking precedence over the configuration file.
APP_KEY_ENV_VAR = 'UNIBOX_APP_KEY'
REDIRECT_BASE_ENV_VAR = 'UNIBOX_REDIRECT_BASE'
ACCESS_TOKEN_ENV_VAR = 'UNIBOX_ACCESS_TOKEN'

# The redirect base must be registered as-is (with both suffixes) in the app console.
DEFAULT_REDIRECT_BASE = 'http://localhost:8085/'

# Path suffixes appended to the redirect base.
AUTHORIZE_PATH_SUFFIX = 'authorize'
TOKEN_PATH_SUFFIX = 'token'

# Query parameter carrying the original redirect URL (fragment included) on the second hop.
URL_WITH_FRAGMENT_PARAM = 'url_with_fragment'

# OAuth-related constants
OAUTH_AUTHORIZE_URL = 'https://www.dropbox.com/oauth2/authorize'
OAUTH_CALLBACK_TIMEOUT = 300  # 5 minutes

# How long a server thread holds an inbound request waiting for the flow to claim it.
REQUEST_HOLD_TIMEOUT = 30

# Dropbox API v2 roots.
API_ROOT = 'https://api.dropboxapi.com/2'
CONTENT_ROOT = 'https://content.dropboxapi.com/2'
API_TIMEOUT = 60 * 20

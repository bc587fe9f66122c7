"""Unibox: loopback OAuth2 login and file access for Dropbox from desktop tools."""

__version__ = "1.0.0"
__author__ = "Unibox Contributors"
__license__ = "MIT"

from .oauth_flow import LoopbackSession, AuthResult, FlowState, authenticate
from .oauth_server import LoopbackListener
from .oauth_token import OAuthResult, AuthorizationRequest, RedirectEndpoint
from .Storage import Storage
from .utils import UniboxException
from .utils import AuthError
from .utils import ListenerBindError
from .utils import InvalidRedirectBase
from .utils import MalformedRedirect
from .utils import StateMismatch
from .utils import AuthorizationDenied
from .utils import BrowserLaunchError
from .utils import AuthTimeout
from .utils import AuthCancelled
from .utils import StorageError

import os
import yaml
import tempfile
import stat
import shutil

from .constants import CONFIG_FILE_PATH, APP_KEY_ENV_VAR, REDIRECT_BASE_ENV_VAR, DEFAULT_REDIRECT_BASE


class UniboxException ( Exception ):
    '''Exception type used for various errors in the Unibox SDK.'''

    def __init__(self, message, code=None):
        """
        Initialize the exception with a message and an optional status code.

        Args:
            message (str): The error message.
            code (int, optional): An optional status code returned by the API. Defaults to None.
        """
        super().__init__(message)
        self.code = code


class AuthError ( UniboxException ):
    '''Failure of a login attempt, tagged with the flow stage it happened in.'''

    def __init__(self, message, stage=None):
        super().__init__(message)
        self.stage = stage

    def __str__(self):
        msg = super().__str__()
        if self.stage is None:
            return msg
        return "%s (during %s)" % ( msg, self.stage.value )


class ListenerBindError ( AuthError ):
    '''The loopback listener could not bind its host/port.'''

    def __init__(self, host, port, reason, stage=None):
        super().__init__("cannot listen on %s:%s: %s" % ( host, port, reason ), stage=stage)
        self.host = host
        self.port = port


class InvalidRedirectBase ( AuthError ):
    '''The redirect base is not a usable http loopback URI.'''

    def __init__(self, base, reason, stage=None):
        super().__init__("invalid redirect base %r: %s" % ( base, reason ), stage=stage)
        self.base = base


class MalformedRedirect ( AuthError ):
    '''A redirect arrived without the fields the flow needs.'''
    pass


class StateMismatch ( AuthError ):
    '''The state echoed by the provider is not the one we generated.

    Any token delivered alongside it must be treated as forged.
    '''

    def __init__(self, expected, received, stage=None):
        super().__init__("anti-forgery state mismatch - possible forged or replayed redirect", stage=stage)
        self.expected = expected
        self.received = received


class AuthorizationDenied ( AuthError ):
    '''The provider redirected back with an error instead of a token.'''

    def __init__(self, error, description=None, stage=None):
        super().__init__("authorization denied: %s" % ( description or error, ), stage=stage)
        self.error = error
        self.description = description


class BrowserLaunchError ( AuthError ):
    '''The system browser could not be opened. The user can still visit the URL by hand.'''
    pass


class AuthTimeout ( AuthError ):
    pass


class AuthCancelled ( AuthError ):
    pass


class StorageError ( UniboxException ):
    '''Error returned by the storage API.'''
    pass


def loadConfig():
    """
    Load the configuration file.

    Returns:
        dict: Loaded configuration or None if file doesn't exist
    """
    try:
        with open( CONFIG_FILE_PATH, 'rb' ) as f:
            return yaml.safe_load( f.read() )
    except FileNotFoundError:
        return None

def getConfig():
    """
    Get the effective app key and redirect base.

    Values are acquired in the following order:
    1- UNIBOX_APP_KEY and UNIBOX_REDIRECT_BASE environment variables.
    2- The YAML configuration file.
    3- The default redirect base (there is no default app key).

    Returns:
        tuple: (app_key, redirect_base)
    """
    conf = loadConfig() or {}
    appKey = os.environ.get( APP_KEY_ENV_VAR, None ) or conf.get( 'app_key', None )
    redirectBase = os.environ.get( REDIRECT_BASE_ENV_VAR, None ) or conf.get( 'redirect_base', None ) or DEFAULT_REDIRECT_BASE
    return ( appKey, redirectBase )

def writeConfig( appKey, redirectBase = None ):
    """
    Securely write the configuration to a file on disk.

    Access tokens are never written here.

    Args:
        appKey (str): The application key registered with the provider.
        redirectBase (str): The loopback redirect base URI.
    """
    conf = loadConfig() or {}

    if appKey is not None:
        conf[ 'app_key' ] = appKey
    if redirectBase is not None:
        conf[ 'redirect_base' ] = redirectBase

    content = yaml.safe_dump( conf, default_flow_style = False ).encode()

    # Write to a temporary file with restricted permissions first and then move it
    # in place, so the file is never readable by other users.
    fd, tmp_path = tempfile.mkstemp()
    os.chmod( tmp_path, stat.S_IWUSR | stat.S_IRUSR )  # 0o600

    try:
        try:
            os.write( fd, content )
        finally:
            os.close( fd )

        # Move is an atomic operation on unix.
        shutil.move( tmp_path, CONFIG_FILE_PATH )
    finally:
        if os.path.isfile( tmp_path ):
            os.unlink( tmp_path )

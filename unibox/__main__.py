import sys
import traceback
from .constants import ACCESS_TOKEN_ENV_VAR, OAUTH_CALLBACK_TIMEOUT


def cli(args):
    """
    Command line interface for the Unibox SDK.

    Args:
        args (list): list of CLI arguments to parse.
    """
    import argparse
    import os

    from termcolor import colored

    from .utils import getConfig, UniboxException

    def print_progress( state, message ):
        from .oauth_flow import FlowState
        if state == FlowState.FAILED:
            print( colored( message, 'red' ) )
        elif state == FlowState.COMPLETED:
            print( colored( message, 'green' ) )
        else:
            print( colored( message, 'cyan' ) )

    def run_login( timeout, no_browser ):
        from .oauth_flow import LoopbackSession
        appKey, redirectBase = getConfig()
        if not appKey:
            raise UniboxException( 'no app key configured, run "unibox config --app-key KEY" first' )

        with LoopbackSession( appKey, redirectBase, progress = print_progress, quiet = True ) as session:
            result = session.authenticate( timeout = timeout, no_browser = no_browser )
        if not result.success:
            raise result.error
        return result.result

    def get_token( token ):
        if token:
            return token
        token = os.environ.get( ACCESS_TOKEN_ENV_VAR, None )
        if token:
            return token
        return run_login( OAUTH_CALLBACK_TIMEOUT, False ).access_token

    def get_storage( actionArgs ):
        from .Storage import Storage
        storage = Storage( get_token( actionArgs.token ) )
        if actionArgs.team:
            storage.as_team_admin()
        return storage

    parser = argparse.ArgumentParser( prog = 'unibox' )
    parser.add_argument( 'action',
                         type = str,
                         help = 'action, currently supported "version", "config" (store app key and redirect base), "login" (browser login, prints the token), "ls" (list a folder), "get" (download a file or folder)' )

    # Everything after the command name and the action name is passed
    # to the action argument parser.
    rootArgs = args[ 1: 2 ]
    actionArgs = args[ 2: ]
    args = parser.parse_args( rootArgs )

    action = args.action.lower()

    if action == 'version':
        from . import __version__
        print( "Unibox Python SDK Version %s" % ( __version__, ) )
    elif action == 'config':
        from . import utils
        parser = argparse.ArgumentParser( prog = 'unibox config' )
        parser.add_argument( '--app-key',
                             type = str,
                             required = True,
                             help = 'application key registered with the provider' )
        parser.add_argument( '--redirect-base',
                             type = str,
                             default = None,
                             help = 'loopback redirect base, e.g. http://localhost:8085/' )
        configArgs = parser.parse_args( actionArgs )
        utils.writeConfig( configArgs.app_key, configArgs.redirect_base )
        print( "Configuration has been stored to: %s" % ( utils.CONFIG_FILE_PATH, ) )
    elif action == 'login':
        parser = argparse.ArgumentParser( prog = 'unibox login' )
        parser.add_argument( '--no-browser',
                             action = 'store_true',
                             help = 'print URL instead of opening browser' )
        parser.add_argument( '--timeout',
                             type = float,
                             default = OAUTH_CALLBACK_TIMEOUT,
                             help = 'seconds to wait for each redirect, 0 to wait forever' )
        loginArgs = parser.parse_args( actionArgs )
        result = run_login( loginArgs.timeout or None, loginArgs.no_browser )
        print( "uid: %s" % ( result.account_uid, ) )
        print( "access token: %s" % ( result.access_token, ) )
    elif action == 'ls':
        from tabulate import tabulate
        parser = argparse.ArgumentParser( prog = 'unibox ls' )
        parser.add_argument( 'path',
                             type = str,
                             nargs = '?',
                             default = '',
                             help = 'folder to list, root if omitted' )
        parser.add_argument( '--recursive', action = 'store_true', help = 'list sub-folders too' )
        parser.add_argument( '--token', type = str, default = None, help = 'access token to use' )
        parser.add_argument( '--team', action = 'store_true', help = 'act as the team admin on the team root' )
        lsArgs = parser.parse_args( actionArgs )
        entries = get_storage( lsArgs ).list_folder( lsArgs.path, recursive = lsArgs.recursive )
        rows = [ ( e.get( '.tag', '' ), e.get( 'path_display', e.get( 'name', '' ) ), e.get( 'size', '' ) ) for e in entries ]
        print( tabulate( rows, headers = [ 'type', 'path', 'size' ], tablefmt = 'grid' ) )
    elif action == 'get':
        parser = argparse.ArgumentParser( prog = 'unibox get' )
        parser.add_argument( 'path', type = str, help = 'remote file or folder' )
        parser.add_argument( 'dest', type = str, help = 'local file, or directory with --folder' )
        parser.add_argument( '--folder', action = 'store_true', help = 'download every file of the folder' )
        parser.add_argument( '--recursive', action = 'store_true', help = 'include sub-folders with --folder' )
        parser.add_argument( '--token', type = str, default = None, help = 'access token to use' )
        parser.add_argument( '--team', action = 'store_true', help = 'act as the team admin on the team root' )
        getArgs = parser.parse_args( actionArgs )
        storage = get_storage( getArgs )
        if getArgs.folder:
            written = storage.download_folder( getArgs.path, getArgs.dest, recursive = getArgs.recursive )
            print( "Downloaded %d files to %s" % ( len( written ), getArgs.dest ) )
        else:
            storage.download_file( getArgs.path, getArgs.dest )
            print( "Downloaded %s to %s" % ( getArgs.path, getArgs.dest ) )
    else:
        raise Exception( 'invalid action: %s' % ( action, ) )

def main():
    args = sys.argv

    debug_mode = False
    if "--debug" in args:
        debug_mode = True
        args.remove("--debug")

    try:
        cli(args)
    except Exception as e:
        print("Error:", e, file=sys.stderr)

        if debug_mode:
            print(traceback.format_exc(), file=sys.stderr)

        return 1

if __name__ == "__main__":
    sys.exit(main())

import json
import os
import requests

from .constants import API_ROOT, CONTENT_ROOT, API_TIMEOUT
from .utils import StorageError
from .user_agent_utils import build_user_agent


def _build_user_agent():
    from . import __version__
    return build_user_agent( 'unibox-py', __version__ )


class Storage( object ):
    '''Minimal Dropbox API client consuming a token obtained by the loopback login.'''

    def __init__( self, access_token, timeout = API_TIMEOUT, session = None ):
        '''Create a storage client.

        Args:
            access_token (str): OAuth2 access token.
            timeout (int): per request timeout in seconds.
            session (requests.Session): optional session to issue requests with.
        '''
        self._token = access_token
        self._timeout = timeout
        self._session = session or requests.Session()
        self._memberId = None
        self._namespaceId = None

    def _headers( self, extra = None ):
        headers = {
            'Authorization': 'Bearer %s' % ( self._token, ),
            'User-Agent': _build_user_agent(),
        }
        if self._memberId is not None:
            headers[ 'Dropbox-API-Select-User' ] = self._memberId
        if self._namespaceId is not None:
            headers[ 'Dropbox-API-Path-Root' ] = json.dumps( { '.tag' : 'root', 'root' : self._namespaceId } )
        if extra:
            headers.update( extra )
        return headers

    def _check( self, resp ):
        if 200 <= resp.status_code < 300:
            return
        try:
            summary = resp.json().get( 'error_summary', resp.text )
        except ValueError:
            summary = resp.text
        raise StorageError( 'storage API error (%s): %s' % ( resp.status_code, summary ), code = resp.status_code )

    def _rpc( self, endpoint, params = None, useMember = True ):
        headers = self._headers()
        if not useMember:
            headers.pop( 'Dropbox-API-Select-User', None )
            headers.pop( 'Dropbox-API-Path-Root', None )
        if params is None:
            resp = self._session.post( '%s/%s' % ( API_ROOT, endpoint ), headers = headers, timeout = self._timeout )
        else:
            resp = self._session.post( '%s/%s' % ( API_ROOT, endpoint ), headers = headers, json = params, timeout = self._timeout )
        self._check( resp )
        return resp.json()

    def as_team_admin( self ):
        '''Act as the authenticated team admin and target the team root namespace.

        Returns:
            the team member ID now in use.
        '''
        admin = self._rpc( 'team/token/get_authenticated_admin', useMember = False )
        self._memberId = admin[ 'admin_profile' ][ 'team_member_id' ]

        account = self._rpc( 'users/get_current_account' )
        self._namespaceId = account[ 'root_info' ][ 'root_namespace_id' ]
        return self._memberId

    def list_folder( self, path, recursive = False ):
        '''List the entries of a folder.

        Args:
            path (str): folder path, '' for the root.
            recursive (bool): list sub-folders too.

        Returns:
            a list of metadata dicts.
        '''
        page = self._rpc( 'files/list_folder', { 'path' : path, 'recursive' : recursive } )
        entries = list( page.get( 'entries', [] ) )
        while page.get( 'has_more', False ):
            page = self._rpc( 'files/list_folder/continue', { 'cursor' : page[ 'cursor' ] } )
            entries.extend( page.get( 'entries', [] ) )
        return entries

    def download( self, path ):
        '''Download a file's content.

        Args:
            path (str): file path.

        Returns:
            the file content as bytes.
        '''
        headers = self._headers( { 'Dropbox-API-Arg' : json.dumps( { 'path' : path } ) } )
        resp = self._session.post( '%s/files/download' % ( CONTENT_ROOT, ), headers = headers, timeout = self._timeout )
        self._check( resp )
        return resp.content

    def download_file( self, path, savePath ):
        '''Download a file to disk.

        Args:
            path (str): file path.
            savePath (str): local destination file.
        '''
        data = self.download( path )
        with open( savePath, 'wb' ) as f:
            f.write( data )
        return savePath

    def download_folder( self, path, saveDir, recursive = False ):
        '''Download every file of a folder into a local directory.

        Files from sub-folders (when recursive) are flattened into saveDir.

        Returns:
            list of local paths written.
        '''
        os.makedirs( saveDir, exist_ok = True )
        written = []
        for entry in self.list_folder( path, recursive = recursive ):
            if entry.get( '.tag' ) != 'file':
                continue
            written.append( self.download_file( entry[ 'path_lower' ], os.path.join( saveDir, entry[ 'name' ] ) ) )
        return written

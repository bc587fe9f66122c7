"""
Unit tests for the storage client. HTTP calls go to a mocked requests session.
"""

import json
import os
from unittest.mock import MagicMock

import pytest

from unibox.Storage import Storage
from unibox.utils import StorageError


def _response(status=200, payload=None, content=b''):
    resp = MagicMock()
    resp.status_code = status
    resp.content = content
    resp.text = json.dumps(payload) if payload is not None else ''
    if payload is not None:
        resp.json.return_value = payload
    else:
        resp.json.side_effect = ValueError('no json')
    return resp


def _storage(*responses):
    session = MagicMock()
    session.post.side_effect = list(responses)
    return Storage('tok', session=session), session


class TestStorage:

    def test_list_folder_follows_cursor(self):
        storage, session = _storage(
            _response(payload={'entries': [{'.tag': 'file', 'name': 'a'}], 'has_more': True, 'cursor': 'c1'}),
            _response(payload={'entries': [{'.tag': 'folder', 'name': 'b'}], 'has_more': False}),
        )

        entries = storage.list_folder('/assets', recursive=True)

        assert [e['name'] for e in entries] == ['a', 'b']
        first, second = session.post.call_args_list
        assert first.args[0] == 'https://api.dropboxapi.com/2/files/list_folder'
        assert first.kwargs['json'] == {'path': '/assets', 'recursive': True}
        assert first.kwargs['headers']['Authorization'] == 'Bearer tok'
        assert first.kwargs['headers']['User-Agent'].startswith('unibox-py/')
        assert second.args[0] == 'https://api.dropboxapi.com/2/files/list_folder/continue'
        assert second.kwargs['json'] == {'cursor': 'c1'}

    def test_download(self):
        storage, session = _storage(_response(content=b'data'))

        assert storage.download('/assets/a.png') == b'data'

        call = session.post.call_args
        assert call.args[0] == 'https://content.dropboxapi.com/2/files/download'
        assert json.loads(call.kwargs['headers']['Dropbox-API-Arg']) == {'path': '/assets/a.png'}

    def test_api_error(self):
        storage, _ = _storage(_response(status=409, payload={'error_summary': 'path/not_found/'}))

        with pytest.raises(StorageError) as exc_info:
            storage.list_folder('/missing')
        assert exc_info.value.code == 409
        assert 'path/not_found/' in str(exc_info.value)

    def test_api_error_without_json(self):
        storage, _ = _storage(_response(status=401))
        with pytest.raises(StorageError) as exc_info:
            storage.download('/a')
        assert exc_info.value.code == 401

    def test_as_team_admin(self):
        storage, session = _storage(
            _response(payload={'admin_profile': {'team_member_id': 'dbmid:1'}}),
            _response(payload={'root_info': {'root_namespace_id': '777'}}),
            _response(payload={'entries': [], 'has_more': False}),
        )

        assert storage.as_team_admin() == 'dbmid:1'
        storage.list_folder('')

        admin_call, account_call, list_call = session.post.call_args_list
        assert 'Dropbox-API-Select-User' not in admin_call.kwargs['headers']
        assert account_call.kwargs['headers']['Dropbox-API-Select-User'] == 'dbmid:1'
        headers = list_call.kwargs['headers']
        assert headers['Dropbox-API-Select-User'] == 'dbmid:1'
        assert json.loads(headers['Dropbox-API-Path-Root']) == {'.tag': 'root', 'root': '777'}

    def test_download_folder_skips_folders(self, tmp_path):
        storage, session = _storage(
            _response(payload={'entries': [
                {'.tag': 'file', 'name': 'a.txt', 'path_lower': '/docs/a.txt'},
                {'.tag': 'folder', 'name': 'sub', 'path_lower': '/docs/sub'},
                {'.tag': 'file', 'name': 'b.txt', 'path_lower': '/docs/b.txt'},
            ], 'has_more': False}),
            _response(content=b'A'),
            _response(content=b'B'),
        )

        dest = tmp_path / 'out'
        written = storage.download_folder('/docs', str(dest))

        assert written == [str(dest / 'a.txt'), str(dest / 'b.txt')]
        assert (dest / 'a.txt').read_bytes() == b'A'
        assert (dest / 'b.txt').read_bytes() == b'B'
        assert not os.path.exists(dest / 'sub')

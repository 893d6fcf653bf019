import os

import pytest

from loudguard import LdErr, LdException
from loudguard.ldlibrary import LdLibrary, parse_extensions


@pytest.fixture
def library_tree(tmp_path):
	for name in ("a.mp3", "b.FLAC", "notes.txt", "sub/c.ogg", "sub/deeper/d.opus", "other/e.wv"):
		path = tmp_path / name
		path.parent.mkdir(parents=True, exist_ok=True)
		path.write_bytes(b"")
	return tmp_path


def names(paths):
	return [os.path.basename(path) for path in paths]


def test_parse_extensions():
	assert parse_extensions("mp3, .flac,FLAC,xyz,,") == frozenset({".mp3", ".flac"})
	assert parse_extensions("xyz") == frozenset()

def test_no_paths():
	with pytest.raises(LdException) as excinfo:
		LdLibrary([])
	assert excinfo.value.error is LdErr.EINVPATH

def test_directory_scan(library_tree):
	library = LdLibrary([str(library_tree)])
	assert names(library.get_supported_audio_files()) == ["a.mp3", "b.FLAC"]

def test_recursive_scan(library_tree):
	library = LdLibrary([str(library_tree)], recursive=True)
	assert sorted(names(library.get_supported_audio_files())) == \
	       ["a.mp3", "b.FLAC", "c.ogg", "d.opus", "e.wv"]

def test_extension_filter(library_tree):
	library = LdLibrary([str(library_tree)], recursive=True, extensions={".ogg", ".xyz"})
	assert names(library.get_supported_audio_files()) == ["c.ogg"]

def test_files_given_directly(library_tree):
	paths = [str(library_tree / "a.mp3"), str(library_tree / "notes.txt"), str(library_tree / "sub")]
	library = LdLibrary(paths)
	assert names(library.get_supported_audio_files()) == ["a.mp3"]

def test_grouping_by_folder(library_tree):
	library = LdLibrary([str(library_tree)], recursive=True)
	by_folder = library.get_supported_audio_files_by_folder()
	assert list(by_folder) == sorted(by_folder)
	assert names(by_folder[str(library_tree)]) == ["a.mp3", "b.FLAC"]
	assert names(by_folder[str(library_tree / "sub" / "deeper")]) == ["d.opus"]
	assert len(by_folder) == 4

import csv

import pytest

from loudguard import LdConfig, LdErr, LdOpts, LdTagMode
from loudguard.ldtrack import LdScanner
from loudguard.ldworker import LdWorker

from conftest import FakeMedia, FakeTagger


def add_file(tmp_path, fake_decoder, name, media):
	path = tmp_path / name
	path.parent.mkdir(parents=True, exist_ok=True)
	path.write_bytes(b"")
	fake_decoder.library[str(path)] = media
	return str(path)

def read_report(csv_path):
	with open(csv_path, newline="", encoding="utf-8") as csv_file:
		return list(csv.reader(csv_file))[1:]

def make_worker(config, paths, scanner, tagger):
	return LdWorker(config, paths, scanner=scanner, tagger=tagger, progress=False)


def test_track_mode(tmp_path, scanner, fake_decoder, fake_meter, fake_tagger):
	for index in range(4):
		add_file(tmp_path, fake_decoder, f"lib/{index:02d}.flac", FakeMedia(loudness=-20.0))
	csv_path = tmp_path / "report.csv"
	config = LdConfig(threads=4, tag_mode=LdTagMode.WRITE_STANDARD,
			  csv_path=str(csv_path), verbosity=0)

	status = make_worker(config, [str(tmp_path / "lib")], scanner, fake_tagger).scan_library()

	assert status is LdErr.EOK
	assert len(fake_tagger.written) == 4
	assert fake_meter.combine_calls == 0
	for track in fake_tagger.written:
		assert track.is_success()
		assert track.gains.album is None
		assert track.album_gain is None
		assert track.meter is None
	rows = read_report(csv_path)
	assert len(rows) == 4
	assert all(row[0] == "File" for row in rows)
	assert all(row[9] == "2.00" for row in rows)

def test_track_mode_failure(tmp_path, scanner, fake_decoder, fake_tagger):
	good = add_file(tmp_path, fake_decoder, "lib/01.flac", FakeMedia())
	add_file(tmp_path, fake_decoder, "lib/02.flac", FakeMedia(stream_error=True))
	config = LdConfig(threads=2, verbosity=0)

	status = make_worker(config, [str(tmp_path / "lib")], scanner, fake_tagger).scan_library()

	assert status is LdErr.ESTREAM
	assert [track.path for track in fake_tagger.written] == [good]

def test_tag_failure_is_not_fatal(tmp_path, scanner, fake_decoder):
	path = add_file(tmp_path, fake_decoder, "lib/01.flac", FakeMedia())
	tagger = FakeTagger(fail_paths=[path])
	config = LdConfig(threads=1, tag_mode=LdTagMode.WRITE_STANDARD, verbosity=0)
	status = make_worker(config, [path], scanner, tagger).scan_library()
	assert status is LdErr.EOK

def test_album_mode(tmp_path, scanner, fake_decoder, fake_meter, fake_tagger):
	for index in range(3):
		add_file(tmp_path, fake_decoder, f"lib/album1/{index:02d}.flac",
			 FakeMedia(loudness=-16.0, peaks=(0.4, 0.8 if index == 1 else 0.3)))
	for index in range(2):
		add_file(tmp_path, fake_decoder, f"lib/album2/{index:02d}.mp3",
			 FakeMedia(container="mp3", codec="mp3", loudness=-22.0))
	csv_path = tmp_path / "report.csv"
	config = LdConfig(opts=LdOpts.OALBUM | LdOpts.ORECURSIVE, threads=4,
			  tag_mode=LdTagMode.WRITE_EXTENDED, csv_path=str(csv_path), verbosity=0)

	status = make_worker(config, [str(tmp_path / "lib")], scanner, fake_tagger).scan_library()

	assert status is LdErr.EOK
	assert fake_meter.combine_calls == 2
	assert len(fake_tagger.written) == 5
	for track in fake_tagger.written:
		assert track.gains.album is not None
		assert track.meter is None
		if "album1" in track.path:
			assert track.album_peak == 0.8
			assert track.album_gain == pytest.approx(-2.0)
		else:
			assert track.album_gain == pytest.approx(4.0)

	rows = read_report(csv_path)
	assert len(rows) == 7
	albums = [row for row in rows if row[0] == "Album"]
	assert sorted(row[1] for row in albums) == [str(tmp_path / "lib" / "album1"),
						    str(tmp_path / "lib" / "album2")]
	# Every album record comes after its own tracks
	for album in albums:
		position = rows.index(album)
		tracks = [index for index, row in enumerate(rows)
			  if row[0] == "File" and row[1].startswith(album[1] + "/")]
		assert len(tracks) > 0
		assert max(tracks) < position

def test_album_with_failed_track(tmp_path, scanner, fake_decoder, fake_meter, fake_tagger):
	good = add_file(tmp_path, fake_decoder, "album/01.flac", FakeMedia())
	add_file(tmp_path, fake_decoder, "album/02.flac", FakeMedia(open_error=True))
	csv_path = tmp_path / "report.csv"
	config = LdConfig(opts=LdOpts.OALBUM, threads=2, tag_mode=LdTagMode.WRITE_STANDARD,
			  csv_path=str(csv_path), verbosity=0)

	status = make_worker(config, [str(tmp_path / "album")], scanner, fake_tagger).scan_library()

	assert status in (LdErr.EOPEN, LdErr.ETRACKFAIL)
	assert fake_meter.combine_calls == 0
	# The good track still gets its own results
	assert [track.path for track in fake_tagger.written] == [good]
	assert fake_tagger.written[0].gains.album is None
	rows = read_report(csv_path)
	assert [row[0] for row in rows] == ["File"]

def test_album_mixing_opus(tmp_path, scanner, fake_decoder, fake_meter, fake_tagger):
	add_file(tmp_path, fake_decoder, "album/01.opus", FakeMedia(container="ogg", codec="opus"))
	add_file(tmp_path, fake_decoder, "album/02.flac", FakeMedia())
	config = LdConfig(opts=LdOpts.OALBUM, threads=2, verbosity=0)

	status = make_worker(config, [str(tmp_path / "album")], scanner, fake_tagger).scan_library()

	assert status is LdErr.EINCOMPAT
	assert fake_meter.combine_calls == 0
	assert len(fake_tagger.written) == 2
	assert all(track.album_gain is None for track in fake_tagger.written)

def test_album_aggregated_once_per_folder(tmp_path, scanner, fake_decoder, fake_meter, fake_tagger):
	for index in range(12):
		add_file(tmp_path, fake_decoder, f"album/{index:02d}.flac", FakeMedia())
	config = LdConfig(opts=LdOpts.OALBUM, threads=8, verbosity=0)
	status = make_worker(config, [str(tmp_path / "album")], scanner, fake_tagger).scan_library()
	assert status is LdErr.EOK
	assert fake_meter.combine_calls == 1
	assert len(fake_tagger.written) == 12

def test_remove_tags(tmp_path, scanner, fake_decoder, fake_tagger):
	add_file(tmp_path, fake_decoder, "lib/01.mp3", FakeMedia(container="mp3", codec="mp3"))
	add_file(tmp_path, fake_decoder, "lib/02.opus", FakeMedia(container="ogg", codec="opus"))
	add_file(tmp_path, fake_decoder, "lib/03.flac", FakeMedia(open_error=True))
	config = LdConfig(tag_mode=LdTagMode.DELETE, threads=2, verbosity=0)

	status = make_worker(config, [str(tmp_path / "lib")], scanner, fake_tagger).remove_tags()

	assert status is LdErr.EOPEN
	assert sorted(track.codec for track in fake_tagger.cleared) == ["mp3", "opus"]
	assert fake_tagger.written == []

def test_empty_library(tmp_path, scanner, fake_tagger):
	(tmp_path / "notes.txt").write_text("nothing to see")
	config = LdConfig(verbosity=0)
	status = make_worker(config, [str(tmp_path)], scanner, fake_tagger).scan_library()
	assert status is LdErr.EOK
	assert fake_tagger.written == []

def test_album_survives_unexpected_error(tmp_path, scanner, fake_decoder, fake_meter, fake_tagger):
	add_file(tmp_path, fake_decoder, "album/01.flac", FakeMedia())
	add_file(tmp_path, fake_decoder, "album/02.flac", FakeMedia(crash=True))
	add_file(tmp_path, fake_decoder, "album/03.flac", FakeMedia())
	config = LdConfig(opts=LdOpts.OALBUM, threads=3, tag_mode=LdTagMode.WRITE_STANDARD,
			  verbosity=0)

	status = make_worker(config, [str(tmp_path / "album")], scanner, fake_tagger).scan_library()

	assert status in (LdErr.EUNKNOWN, LdErr.ETRACKFAIL)
	assert fake_meter.combine_calls == 0
	# The folder still got finalized, siblings have their track results
	assert sorted(track.name for track in fake_tagger.written) == ["01.flac", "03.flac"]
	assert all(track.gains.album is None for track in fake_tagger.written)

def test_album_with_silent_track(tmp_path, scanner, fake_decoder, fake_meter, fake_tagger):
	add_file(tmp_path, fake_decoder, "album/01.flac", FakeMedia(loudness=-16.0))
	add_file(tmp_path, fake_decoder, "album/02.flac",
		 FakeMedia(loudness=float("-inf"), peaks=(0.0, 0.0)))
	add_file(tmp_path, fake_decoder, "album/03.flac", FakeMedia(loudness=-16.0))
	csv_path = tmp_path / "report.csv"
	config = LdConfig(opts=LdOpts.OALBUM, threads=3, tag_mode=LdTagMode.WRITE_STANDARD,
			  csv_path=str(csv_path), verbosity=0)

	status = make_worker(config, [str(tmp_path / "album")], scanner, fake_tagger).scan_library()

	assert status is LdErr.EOK
	assert fake_meter.combine_calls == 1
	# No finite gain for the silent one, so no tags
	assert sorted(track.name for track in fake_tagger.written) == ["01.flac", "03.flac"]
	for track in fake_tagger.written:
		assert track.album_gain == pytest.approx(-2.0)

	rows = read_report(csv_path)
	assert [row[0] for row in rows].count("File") == 3
	assert [row[0] for row in rows].count("Album") == 1
	silent = [row for row in rows if row[1].endswith("02.flac")][0]
	assert silent[2] == "-inf"

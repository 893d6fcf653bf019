#
# Copyright 2020 - 2025 Nick Kossifidis <mickflemm@gmail.com>
#
# SPDX-License-Identifier: GPL-2.0-or-later
#
# This file is part of loudness guard, a UoC Radio project.
# For more infos visit https://rastapank.radio.uoc.gr
#
# ReplayGain tag handling, one handler per container/codec
#

from logging import (
	debug,
	error
)
from loudguard import (
	LdErr,
	LdException,
	LdOpts,
	LdTagMode
)
from loudguard.ldgain import gain_to_q78num

from mutagen import MutagenError
import mutagen.apev2
import mutagen.id3
from mutagen.id3 import TXXX
from mutagen.mp3 import MP3
from mutagen.flac import FLAC
from mutagen.oggvorbis import OggVorbis
from mutagen.oggflac import OggFLAC
from mutagen.oggspeex import OggSpeex
from mutagen.oggopus import OggOpus
from mutagen.mp4 import MP4, MP4FreeForm
from mutagen.asf import ASF
from mutagen.wave import WAVE
from mutagen.aiff import AIFF
from mutagen.wavpack import WavPack
from mutagen.monkeysaudio import MonkeysAudio

# FFmpeg's name for the MP4 family demuxer
MP4_CONTAINER = "mov,mp4,m4a,3gp,3g2,mj2"

RG_TRACK_GAIN = "REPLAYGAIN_TRACK_GAIN"
RG_TRACK_PEAK = "REPLAYGAIN_TRACK_PEAK"
RG_TRACK_RANGE = "REPLAYGAIN_TRACK_RANGE"
RG_ALBUM_GAIN = "REPLAYGAIN_ALBUM_GAIN"
RG_ALBUM_PEAK = "REPLAYGAIN_ALBUM_PEAK"
RG_ALBUM_RANGE = "REPLAYGAIN_ALBUM_RANGE"
RG_REFERENCE = "REPLAYGAIN_REFERENCE_LOUDNESS"
R128_TRACK_GAIN = "R128_TRACK_GAIN"
R128_ALBUM_GAIN = "R128_ALBUM_GAIN"

REPLAYGAIN_KEYS = (
	RG_TRACK_GAIN, RG_TRACK_PEAK, RG_TRACK_RANGE,
	RG_ALBUM_GAIN, RG_ALBUM_PEAK, RG_ALBUM_RANGE,
	RG_REFERENCE,
)
R128_KEYS = (R128_TRACK_GAIN, R128_ALBUM_GAIN)


def replaygain_values(track, mode, unit, album):
	"""
	Tag values for a scanned and evaluated track, in the order
	they get written. Album values are only there when album is
	set and the track got album results.
	"""
	gains = track.gains
	values = {
		RG_TRACK_GAIN: "%.2f %s" % (gains.track.gain, unit),
		RG_TRACK_PEAK: "%.6f" % track.peak,
	}
	with_album = album and gains.album is not None
	if with_album:
		values[RG_ALBUM_GAIN] = "%.2f %s" % (gains.album.gain, unit)
		values[RG_ALBUM_PEAK] = "%.6f" % track.album_peak

	if mode is LdTagMode.WRITE_EXTENDED:
		values[RG_REFERENCE] = "%.2f LUFS" % track.reference
		values[RG_TRACK_RANGE] = "%.2f %s" % (track.loudness_range, unit)
		if with_album:
			values[RG_ALBUM_RANGE] = "%.2f %s" % (track.album_loudness_range, unit)
	return values


class LdTagHandler:

	HANDLERS = {}

	# Set by subclasses
	file_class = None
	supports_lowercase = False

	# Register subclasses for the (container, codec) pairs they handle,
	# a codec of None matches any codec in that container.
	def __init_subclass__(cls, *, containers=(), codecs=(None,), file_class=None, **kwargs):
		super().__init_subclass__(**kwargs)
		if file_class is not None:
			cls.file_class = file_class
		for container in containers:
			for codec in codecs:
				LdTagHandler.HANDLERS[(container, codec)] = cls

	@staticmethod
	def lookup(container, codec):
		handler_class = LdTagHandler.HANDLERS.get((container, codec))
		if handler_class is None:
			handler_class = LdTagHandler.HANDLERS.get((container, None))
		if handler_class is None:
			raise LdException(LdErr.ENOFORMAT, None,
					  f"Codec {codec} in {container} not supported")
		return handler_class

	def __init__(self, config):
		self.config = config
		self.lowercase = self.supports_lowercase and LdOpts.OLOWERCASE in config.opts
		self.strip = LdOpts.OSTRIPTAGS in config.opts

	#
	# HELPERS, overridden per tag family
	#

	def _key(self, key):
		return key.lower() if self.lowercase else key

	def _open(self, path):
		audio = self.file_class(path)
		if audio.tags is None:
			audio.add_tags()
		return audio

	def _remove(self, tags, key):
		for variant in (key, key.lower()):
			if variant in tags:
				del tags[variant]

	def _set(self, tags, key, value):
		tags[self._key(key)] = value

	def _save(self, audio):
		audio.save()

	def _managed_keys(self):
		return REPLAYGAIN_KEYS

	def _values(self, track):
		return replaygain_values(track, self.config.tag_mode, self.config.unit,
					 self.config.scan_album)

	#
	# ENTRY POINTS
	#

	def write(self, track):
		audio = self._open(track.path)
		for key in self._managed_keys():
			self._remove(audio.tags, key)
		for key, value in self._values(track).items():
			self._set(audio.tags, key, value)
		self._save(audio)

	def clear(self, track):
		audio = self._open(track.path)
		for key in self._managed_keys():
			self._remove(audio.tags, key)
		self._save(audio)


#
# Vorbis comments (keys are case insensitive there)
#

class LdVorbisTagHandler(LdTagHandler, containers=("ogg",), codecs=("vorbis",),
			 file_class=OggVorbis):
	pass

class LdFlacTagHandler(LdVorbisTagHandler, containers=("flac",), file_class=FLAC):
	pass

class LdOggFlacTagHandler(LdVorbisTagHandler, containers=("ogg",), codecs=("flac",),
			  file_class=OggFLAC):
	pass

class LdSpeexTagHandler(LdVorbisTagHandler, containers=("ogg",), codecs=("speex",),
			file_class=OggSpeex):
	pass

# Opus has its own gain tags, relative to -23 LUFS and stored
# as Q7.8 numbers, ReplayGain tags only confuse players there.
class LdOpusTagHandler(LdVorbisTagHandler, containers=("ogg",), codecs=("opus",),
		       file_class=OggOpus):

	def _managed_keys(self):
		return REPLAYGAIN_KEYS + R128_KEYS

	def _values(self, track):
		gains = track.gains
		values = {R128_TRACK_GAIN: str(gain_to_q78num(gains.track.gain))}
		if self.config.scan_album and gains.album is not None:
			values[R128_ALBUM_GAIN] = str(gain_to_q78num(gains.album.gain))
		return values


#
# ID3v2 (TXXX frames)
#

class LdID3TagHandler(LdTagHandler, containers=("mp3",), file_class=MP3):

	supports_lowercase = True

	def _remove(self, tags, key):
		tags.delall("TXXX:" + key)
		tags.delall("TXXX:" + key.lower())

	def _set(self, tags, key, value):
		desc = self._key(key)
		tags.add(TXXX(encoding=3, desc=desc, text=[value]))

	def _save(self, audio):
		if self.config.id3v2_version == 3:
			audio.tags.update_to_v23()
		# v1=0 drops ID3v1, v1=1 only keeps an existing one up to date
		audio.save(v2_version=self.config.id3v2_version, v1=0 if self.strip else 1)
		if self.strip:
			mutagen.apev2.delete(audio.filename)

class LdWaveTagHandler(LdID3TagHandler, containers=("wav",), file_class=WAVE):

	def _save(self, audio):
		if self.config.id3v2_version == 3:
			audio.tags.update_to_v23()
		audio.save(v2_version=self.config.id3v2_version)

class LdAiffTagHandler(LdWaveTagHandler, containers=("aiff",), file_class=AIFF):
	pass


#
# MP4 freeform atoms
#

class LdMP4TagHandler(LdTagHandler, containers=(MP4_CONTAINER,), file_class=MP4):

	supports_lowercase = True
	ATOM_PREFIX = "----:com.apple.iTunes:"

	def _remove(self, tags, key):
		super()._remove(tags, LdMP4TagHandler.ATOM_PREFIX + key)
		atom = LdMP4TagHandler.ATOM_PREFIX + key.lower()
		if atom in tags:
			del tags[atom]

	def _set(self, tags, key, value):
		atom = LdMP4TagHandler.ATOM_PREFIX + self._key(key)
		tags[atom] = [MP4FreeForm(value.encode("utf-8"))]


#
# ASF / WMA attributes
#

class LdASFTagHandler(LdTagHandler, containers=("asf",), file_class=ASF):

	supports_lowercase = True

	def _set(self, tags, key, value):
		tags[self._key(key)] = [value]


#
# APEv2 (WavPack / Monkey's Audio)
#

class LdAPETagHandler(LdTagHandler, containers=("wv",), file_class=WavPack):

	def _save(self, audio):
		audio.save()
		if self.strip:
			mutagen.id3.delete(audio.filename)

class LdMonkeysAudioTagHandler(LdAPETagHandler, containers=("ape",), file_class=MonkeysAudio):
	pass


class LdTagWriter:

	def __init__(self, config):
		self.config = config

	def _run(self, track, action):
		try:
			handler_class = LdTagHandler.lookup(track.container, track.codec)
		except LdException as err:
			err.entry = track.path
			error("%s\n\t%s", err, track.path)
			return err

		handler = handler_class(self.config)
		try:
			getattr(handler, action)(track)
		except (MutagenError, OSError, ValueError) as err:
			error("Couldn't write to:\n\t%s\n\t%s", track.path, err)
			return LdException(LdErr.ETAGWRITE, track.path, str(err))
		debug("Tags %s: %s", "written" if action == "write" else "cleared", track.name)
		return None

	def write(self, track):
		"""
		Write tags for a track according to the configured tag mode,
		returns None or the (non-fatal) LdException.
		"""
		mode = self.config.tag_mode
		if mode is LdTagMode.SKIP:
			return None
		if mode is LdTagMode.DELETE:
			return self._run(track, "clear")
		return self._run(track, "write")

	def clear(self, track):
		return self._run(track, "clear")

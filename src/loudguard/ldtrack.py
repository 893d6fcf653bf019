#
# Copyright 2020 - 2025 Nick Kossifidis <mickflemm@gmail.com>
#
# SPDX-License-Identifier: GPL-2.0-or-later
#
# This file is part of loudness guard, a UoC Radio project.
# For more infos visit https://rastapank.radio.uoc.gr
#
# Tracks and the per-track scanner
#

import math
import traceback
from pathlib import Path
from logging import (
	debug,
	info,
	warning,
	error
)
from loudguard import (
	LdErr,
	LdException,
	LdScanState,
	LdScanOutcome
)
from loudguard.lddecoder import LdDecoder
from loudguard.ldmeter import LdMeter
from loudguard.ldgain import (
	effective_pregain,
	compute_gain,
	reference_loudness
)


class LdTrack:

	# Produced by the scanner, frozen once the track reaches
	# a terminal state.
	_SCAN_FIELDS = frozenset({
		"container", "codec", "loudness", "loudness_range",
		"peak", "gain", "reference", "error",
	})

	# Filled in after the scan (album aggregation, gain evaluation),
	# each one can only be set once.
	_WRITE_ONCE_FIELDS = frozenset({
		"album_gain", "album_peak", "album_loudness",
		"album_loudness_range", "gains",
	})

	def __init__(self, path):
		fpath = Path(path)
		self.path = str(fpath)
		self.name = fpath.name
		self.directory = str(fpath.parent)
		self.state = LdScanState.INIT
		self.container = None
		self.codec = None
		self.loudness = None
		self.loudness_range = None
		self.peak = None
		self.gain = None
		self.reference = None
		self.error = None
		self.album_gain = None
		self.album_peak = None
		self.album_loudness = None
		self.album_loudness_range = None
		self.gains = None
		# Meter state, kept around for album aggregation
		self.meter = None

	# Same trick as a frozen dataclass, but decided at runtime
	# from the scan state.
	def __setattr__(self, key, value):
		current_state = self.__dict__.get("state")
		if key == "state" and current_state is not None:
			value = current_state.advance(value)
		elif key in LdTrack._SCAN_FIELDS and current_state is not None \
		     and current_state.is_terminal():
			raise TypeError(f"Cannot modify scanned track field: {key}")
		elif key in LdTrack._WRITE_ONCE_FIELDS and self.__dict__.get(key) is not None:
			raise TypeError(f"Track field already set: {key}")
		super().__setattr__(key, value)

	def __repr__(self):
		return f"LdTrack({self.path!r}, {self.state})"

	def is_success(self):
		return self.state is LdScanState.SUCCESS

	def set_album_results(self, gain, peak, loudness, loudness_range):
		if not self.is_success():
			raise LdException(LdErr.ESTATE, self.path,
					  "Album results on a track that wasn't scanned")
		self.album_gain = gain
		self.album_peak = peak
		self.album_loudness = loudness
		self.album_loudness_range = loudness_range

	def release_meter(self):
		self.meter = None


class LdScanner:

	def __init__(self, decoder_class=LdDecoder, meter_class=LdMeter):
		self.decoder_class = decoder_class
		self.meter_class = meter_class

	@staticmethod
	def _max_true_peak(meter, channels):
		peak = 0.0
		for channel in range(channels):
			try:
				peak = max(peak, meter.true_peak(channel))
			except LdException as err:
				debug("Skipping true peak of channel %i: %s", channel, err)
				continue
		return peak

	def _identify(self, track):
		try:
			with self.decoder_class(track.path) as decoder:
				stream_info = decoder.open()
		except LdException as err:
			error("%s\n\t%s", err, track.path)
			track.error = err
			return LdScanOutcome(False, track.state, err)

		track.container = stream_info.container
		track.codec = stream_info.codec
		return LdScanOutcome(True, track.state, None)

	def _measure(self, track):
		with self.decoder_class(track.path) as decoder:
			stream_info = decoder.open()
			track.container = stream_info.container
			track.codec = stream_info.codec

			meter = self.meter_class(stream_info.channels, stream_info.sample_rate)
			for buffer in decoder.frames():
				meter.feed(buffer)

		# Digital silence comes back as -inf
		loudness = meter.integrated_loudness()
		if not math.isfinite(loudness):
			warning("No measurable loudness (silence ?):\n\t%s", track.path)
		loudness_range = meter.loudness_range()
		peak = LdScanner._max_true_peak(meter, stream_info.channels)
		return meter, loudness, loudness_range, peak

	def scan(self, track, pregain, want_loudness=True):
		"""
		Drive one track through the decoder and the meter.

		With want_loudness unset the file is only opened to identify its
		container and codec, and the scan state is left untouched.
		"""
		if not want_loudness:
			return self._identify(track)

		track.state = LdScanState.PROCESSING

		try:
			meter, loudness, loudness_range, peak = self._measure(track)
		except LdException as err:
			if err.entry is None:
				err.entry = track.path
			error("%s\n\t%s", err, track.path)
			track.error = err
			track.state = LdScanState.FAIL
			return LdScanOutcome(False, track.state, err)
		except Exception as exc:
			error("Got unhandled exception while scanning:\n\t%s\n\t%s", track.path, exc)
			traceback.print_exc()
			err = LdException(LdErr.EUNKNOWN, track.path, str(exc))
			track.error = err
			track.state = LdScanState.FAIL
			return LdScanOutcome(False, track.state, err)

		pregain = effective_pregain(pregain, track.codec)

		track.loudness = loudness
		track.loudness_range = loudness_range
		track.peak = peak
		track.gain = compute_gain(loudness, pregain)
		track.reference = reference_loudness(pregain)
		track.meter = meter
		track.state = LdScanState.SUCCESS

		debug("Scanned %s: %.2f LUFS, %.2f LU, peak %.6f, gain %.2f dB",
		      track.name, loudness, loudness_range, peak, track.gain)
		return LdScanOutcome(True, track.state, None)

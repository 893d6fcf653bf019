#
# Copyright 2020 - 2025 Nick Kossifidis <mickflemm@gmail.com>
#
# SPDX-License-Identifier: GPL-2.0-or-later
#
# This file is part of loudness guard, a UoC Radio project.
# For more infos visit https://rastapank.radio.uoc.gr
#
# Folder / album handling
#

import math
import threading
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
	LdAggregateOutcome,
	OPUS_CODEC
)
from loudguard.ldtrack import LdTrack
from loudguard.ldgain import (
	effective_pregain,
	compute_gain
)


class LdCompletionLatch:
	"""
	Countdown shared by the tasks scanning the tracks of one folder.

	Every task calls count_down() once, after its own track reached a
	terminal state. Exactly one call ever returns True: the one that
	brought the count to zero and won the fired flag. Nobody waits.
	"""

	def __init__(self, count):
		self._remaining = count
		self._fired = False
		# Only guards the arithmetic below, never held while scanning
		self._lock = threading.Lock()

	def count_down(self):
		with self._lock:
			if self._remaining <= 0:
				raise LdException(LdErr.ESTATE, None, "Latch released too many times")
			self._remaining -= 1
			if self._remaining == 0 and not self._fired:
				self._fired = True
				return True
			return False

	@property
	def remaining(self):
		with self._lock:
			return self._remaining


class LdFolder:

	def __init__(self, directory, paths):
		self.directory = str(directory)
		# Membership is fixed from here on
		self.tracks = tuple(LdTrack(path) for path in paths)
		self.state = LdScanState.INIT
		self.error = None
		self.loudness = None
		self.loudness_range = None
		self.peak = None
		self.gain = None
		self._latch = LdCompletionLatch(len(self.tracks))

	def __repr__(self):
		return f"LdFolder({self.directory!r}, {len(self.tracks)} tracks, {self.state})"

	def __len__(self):
		return len(self.tracks)

	#
	# HELPERS
	#

	def _identified_tracks(self):
		return [track for track in self.tracks if track.container is not None]

	def has_different_containers(self):
		containers = {track.container for track in self._identified_tracks()}
		return len(containers) > 1

	def has_different_codecs(self):
		codecs = {track.codec for track in self._identified_tracks()}
		return len(codecs) > 1

	def has_opus(self):
		return any(track.codec == OPUS_CODEC for track in self.tracks)

	def all_opus(self):
		return len(self.tracks) > 0 and all(track.codec == OPUS_CODEC for track in self.tracks)

	def is_incompatible(self):
		return (self.has_different_containers() or self.has_different_codecs()) and self.has_opus()

	def can_process_results(self):
		return all(track.is_success() for track in self.tracks)

	def _set_state(self, new_state):
		self.state = self.state.advance(new_state)

	def _fail(self, err):
		self.error = err
		self._set_state(LdScanState.FAIL)
		return LdAggregateOutcome(False, self.state, err)

	#
	# ENTRY POINTS
	#

	def release(self):
		"""
		Called by every task once its own track is done. Returns True
		for the single task that has to aggregate this folder.
		"""
		is_last = self._latch.count_down()
		if is_last and self.state is LdScanState.INIT:
			return True
		return False

	def aggregate(self, pregain, combine):
		"""
		Compute album loudness/range/peak/gain and write them to every
		track. combine receives the meters of all tracks and returns the
		album (loudness, loudness_range).
		"""
		self._set_state(LdScanState.PROCESSING)

		# Mixing Opus with anything else means there's no single
		# reference level for the album.
		if self.is_incompatible():
			err = LdException(LdErr.EINCOMPAT, self.directory,
					  "Cannot calculate correct album gain when mixing Opus and non-Opus files!")
			error("%s\n\t%s", err, self.directory)
			return self._fail(err)

		failed = [track for track in self.tracks if not track.is_success()]
		if failed:
			err = LdException(LdErr.ETRACKFAIL, self.directory,
					  f"{len(failed)} of {len(self.tracks)} tracks failed")
			error("Album scan failed:\n\t%s\n\t%s", self.directory, err)
			return self._fail(err)

		if self.has_different_containers() or self.has_different_codecs():
			warning("You have different file types in the same album:\n\t%s", self.directory)

		try:
			loudness, loudness_range = combine([track.meter for track in self.tracks])
		except LdException as err:
			if err.entry is None:
				err.entry = self.directory
			return self._fail(err)

		# Silent tracks are gated out, an all silent album has nothing left
		if not math.isfinite(loudness):
			err = LdException(LdErr.EMETER, self.directory, "No measurable album loudness")
			error("%s\n\t%s", err, self.directory)
			return self._fail(err)

		# We only get here if the album isn't mixed, so it's
		# either all Opus or no Opus at all.
		if self.all_opus():
			pregain = effective_pregain(pregain, OPUS_CODEC)

		# Max of the track peaks, no true peak search over the album
		album_peak = max(track.peak for track in self.tracks)
		album_gain = compute_gain(loudness, pregain)

		for track in self.tracks:
			track.set_album_results(album_gain, album_peak, loudness, loudness_range)

		self.loudness = loudness
		self.loudness_range = loudness_range
		self.peak = album_peak
		self.gain = album_gain
		self._set_state(LdScanState.SUCCESS)

		debug("Album %s: %.2f LUFS, %.2f LU, peak %.6f, gain %.2f dB",
		      self.directory, loudness, loudness_range, album_peak, album_gain)
		return LdAggregateOutcome(True, self.state, None)

	def release_meters(self):
		for track in self.tracks:
			track.release_meter()

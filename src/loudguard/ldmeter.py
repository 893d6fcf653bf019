#
# Copyright 2020 - 2025 Nick Kossifidis <mickflemm@gmail.com>
#
# SPDX-License-Identifier: GPL-2.0-or-later
#
# This file is part of loudness guard, a UoC Radio project.
# For more infos visit https://rastapank.radio.uoc.gr
#
# EBU R128 loudness measurement (libebur128 through pyebur128)
#

from logging import (
	debug,
	error
)
from loudguard import (
	LdErr,
	LdException
)

from pyebur128 import (
	MeasurementMode,
	R128State,
	get_loudness_global,
	get_loudness_global_multiple,
	get_loudness_range,
	get_loudness_range_multiple,
	get_true_peak
)

# libebur128 reports its failures as these
_METER_ERRORS = (ValueError, MemoryError, RuntimeError)


class LdMeter:

	MODE = MeasurementMode.MODE_I | MeasurementMode.MODE_LRA | MeasurementMode.MODE_TRUE_PEAK

	def __init__(self, channels, sample_rate):
		try:
			self.state = R128State(channels, sample_rate, LdMeter.MODE)
		except _METER_ERRORS as err:
			raise LdException(LdErr.EMETER, None,
					  f"Could not initialize EBU R128 scanner: {err}") from err
		self.channels = channels
		self.sample_rate = sample_rate

	# Buffer is interleaved, so a frame is one sample per channel
	def feed(self, buffer):
		frames = len(buffer) // self.channels
		if frames == 0:
			return
		try:
			self.state.add_frames(buffer, frames)
		except _METER_ERRORS as err:
			raise LdException(LdErr.EMETER, None, f"Error filtering: {err}") from err

	def integrated_loudness(self):
		try:
			return get_loudness_global(self.state)
		except _METER_ERRORS as err:
			raise LdException(LdErr.EMETER, None,
					  f"Error while calculating loudness: {err}") from err

	def loudness_range(self):
		try:
			return get_loudness_range(self.state)
		except _METER_ERRORS as err:
			raise LdException(LdErr.EMETER, None,
					  f"Error while calculating loudness range: {err}") from err

	def true_peak(self, channel):
		try:
			return get_true_peak(self.state, channel)
		except _METER_ERRORS as err:
			raise LdException(LdErr.EMETER, None,
					  f"Error while calculating true peak: {err}") from err

	@staticmethod
	def combine(meters):
		"""
		Album loudness/range, as if all meters had been fed the
		concatenation of their inputs.
		"""
		states = [meter.state for meter in meters]
		try:
			loudness = get_loudness_global_multiple(states)
			loudness_range = get_loudness_range_multiple(states)
		except _METER_ERRORS as err:
			error("Album loudness fail: %s", err)
			raise LdException(LdErr.EMETER, None,
					  f"Album loudness fail: {err}") from err
		debug("Combined %i meters: %.2f LUFS, %.2f LU", len(states),
		      loudness, loudness_range)
		return loudness, loudness_range

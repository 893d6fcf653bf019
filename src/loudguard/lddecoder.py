#
# Copyright 2020 - 2025 Nick Kossifidis <mickflemm@gmail.com>
#
# SPDX-License-Identifier: GPL-2.0-or-later
#
# This file is part of loudness guard, a UoC Radio project.
# For more infos visit https://rastapank.radio.uoc.gr
#
# Demuxing / decoding through FFmpeg (PyAV)
#

from collections import namedtuple
from logging import (
	debug,
	info,
	warning,
	error
)
from loudguard import (
	LdErr,
	LdException
)

import numpy as np
import av
from av.error import FFmpegError

LdStreamInfo = namedtuple("LdStreamInfo", ["container", "codec", "channels", "sample_rate"])


class LdDecoder:
	"""
	Opens a media file and hands out its first audio stream as a lazy
	sequence of interleaved float64 buffers, at the stream's native
	sample rate and channel count.
	"""

	def __init__(self, path):
		self.path = path
		self.container = None
		self.stream = None
		self.stream_info = None

	def __enter__(self):
		return self

	def __exit__(self, exc_type, exc_value, traceback):
		self.close()
		return False

	def open(self):
		try:
			self.container = av.open(self.path)
		except (FFmpegError, OSError) as err:
			raise LdException(LdErr.EOPEN, self.path,
					  f"Could not open input: {err}") from err

		container_name = self.container.format.name
		debug("Container: %s [%s]\n\t%s", self.container.format.long_name,
		      container_name, self.path)

		self.stream = next(iter(self.container.streams.audio), None)
		if self.stream is None:
			self.close()
			raise LdException(LdErr.EOPEN, self.path, "Could not find audio stream!")

		codec_ctx = self.stream.codec_context
		try:
			codec_name = codec_ctx.codec.canonical_name
			channels = codec_ctx.channels
			sample_rate = codec_ctx.sample_rate
		except (FFmpegError, AttributeError) as err:
			self.close()
			raise LdException(LdErr.EOPEN, self.path,
					  f"Could not open codec: {err}") from err

		if not channels or not sample_rate:
			self.close()
			raise LdException(LdErr.EOPEN, self.path,
					  "Could not find stream info!")

		debug("Stream #%i: %s, %i Hz, %i ch\n\t%s", self.stream.index,
		      codec_ctx.codec.long_name, sample_rate, channels, self.path)

		self.stream_info = LdStreamInfo(container_name, codec_name, channels, sample_rate)
		return self.stream_info

	def frames(self):
		if self.stream is None:
			raise LdException(LdErr.ESTREAM, self.path, "Stream not opened")

		# Let the resampler keep the input layout/rate, we only
		# want packed doubles for the meter.
		resampler = av.AudioResampler(format="dbl")
		try:
			for packet in self.container.demux(self.stream):
				for frame in packet.decode():
					for out_frame in resampler.resample(frame):
						yield self._to_buffer(out_frame)
			# Flush whatever the resampler kept
			for out_frame in resampler.resample(None):
				yield self._to_buffer(out_frame)
		except (FFmpegError, ValueError) as err:
			raise LdException(LdErr.ESTREAM, self.path,
					  f"Error while decoding: {err}") from err

	@staticmethod
	def _to_buffer(frame):
		return np.ascontiguousarray(frame.to_ndarray().reshape(-1), dtype=np.float64)

	def close(self):
		if self.container is not None:
			self.container.close()
		self.container = None
		self.stream = None

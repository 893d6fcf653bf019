#
# Copyright 2020 - 2025 Nick Kossifidis <mickflemm@gmail.com>
#
# SPDX-License-Identifier: GPL-2.0-or-later
#
# This file is part of loudness guard, a UoC Radio project.
# For more infos visit https://rastapank.radio.uoc.gr
#
# Helper constants and structures
#

import os
from enum import (
	Enum,
	IntEnum,
	Flag,
	auto
)
from collections import namedtuple
from dataclasses import dataclass, field
from typing import Optional, FrozenSet

# Version information
__version__ = "0.3"

# Extensions we know how to scan and tag, user provided
# extension lists get filtered against this.
SUPPORTED_EXTENSIONS = frozenset({
	".mp3", ".flac", ".ogg", ".opus", ".mov", ".mp4", ".m4a",
	".3gp", ".3g2", ".mj2", ".asf", ".wma", ".wav", ".wv",
	".aiff", ".aif", ".ape",
})

# FFmpeg's canonical name for the Opus codec
OPUS_CODEC = "opus"

class LdConsts(IntEnum):
	# ReplayGain 2.0 reference level (LUFS)
	RG2_REF_LOUDNESS = -18
	# Opus output gain is relative to -23 LUFS (R128), so
	# every Opus gain gets this extra offset (dB).
	OPUS_REF_OFFSET = -5
	# Lower bound for both pre-gain and true peak level (dB)
	MIN_LEVEL = -32
	MAX_PREGAIN = 32
	MAX_TRUE_PEAK = 3
	DEF_TRUE_PEAK = -1

	def __str__(self):
		consts_strmap = {
			LdConsts.RG2_REF_LOUDNESS:"ReplayGain 2.0 reference loudness (-18 LUFS)",
			LdConsts.OPUS_REF_OFFSET:"Opus reference offset (-23 LUFS vs -18 LUFS)",
			LdConsts.MIN_LEVEL:"Minimum pre-gain / true peak level (-32dB)",
			LdConsts.MAX_PREGAIN:"Maximum pre-gain (32dB)",
			LdConsts.MAX_TRUE_PEAK:"Maximum true peak level (3dBTP)",
			LdConsts.DEF_TRUE_PEAK:"Default true peak level (-1dBTP)",
			}
		return consts_strmap.get(self, "Unknown constant")


class LdOpts(Flag):

	# Keep them powers of 2 so that we can
	# treat them as bits on a bitmask, auto()
	# does that automaticaly
	DEFAULT = 0
	OALBUM = auto()
	OPREVENTCLIP = auto()
	ONOCLIPWARN = auto()
	ORECURSIVE = auto()
	OLOWERCASE = auto()
	OSTRIPTAGS = auto()
	OLUFS = auto()
	OTABOUTPUT = auto()

	def __str__(self):
		opts_strmap = {
			LdOpts.DEFAULT:"Default options",
			LdOpts.OALBUM:"Album scan",
			LdOpts.OPREVENTCLIP:"Clipping prevention",
			LdOpts.ONOCLIPWARN:"Ignore clipping",
			LdOpts.ORECURSIVE:"Recursive scan",
			LdOpts.OLOWERCASE:"Lowercase tags",
			LdOpts.OSTRIPTAGS:"Strip foreign tags",
			LdOpts.OLUFS:"LU/LUFS units",
			LdOpts.OTABOUTPUT:"Tab delimited output",
			}
		return opts_strmap.get(self, "Unknown option")


class LdTagMode(Enum):

	DELETE = "d"
	WRITE_STANDARD = "i"
	WRITE_EXTENDED = "e"
	SKIP = "s"

	def __str__(self):
		return self.value


class LdScanState(Enum):

	INIT = 0
	PROCESSING = auto()
	FAIL = auto()
	SUCCESS = auto()

	def is_terminal(self):
		return self in (LdScanState.FAIL, LdScanState.SUCCESS)

	# The only legal moves, shared by tracks and folders
	def advance(self, new_state):
		allowed = _SCAN_TRANSITIONS.get(self, ())
		if new_state not in allowed:
			raise LdException(LdErr.ESTATE, None,
					  f"Invalid scan state transition {self.name} -> {new_state.name}")
		return new_state

	def __str__(self):
		return self.name.lower()

_SCAN_TRANSITIONS = {
	LdScanState.INIT: (LdScanState.PROCESSING,),
	LdScanState.PROCESSING: (LdScanState.FAIL, LdScanState.SUCCESS),
}


class LdErr(Enum):

	EOK = 0
	EOPEN = auto()
	ESTREAM = auto()
	EMETER = auto()
	EINCOMPAT = auto()
	ETRACKFAIL = auto()
	ETAGWRITE = auto()
	ENOFORMAT = auto()
	ESTATE = auto()
	EINVPATH = auto()
	EINVCONFIG = auto()
	EUNKNOWN = auto()

	def __str__(self):
		err_strmap = {
			LdErr.EOK:"No error",
			LdErr.EOPEN:"Could not open input",
			LdErr.ESTREAM:"Decoding failed",
			LdErr.EMETER:"Loudness measurement failed",
			LdErr.EINCOMPAT:"Incompatible album",
			LdErr.ETRACKFAIL:"Album track failed",
			LdErr.ETAGWRITE:"Couldn't write tags",
			LdErr.ENOFORMAT:"File type not supported",
			LdErr.ESTATE:"Invalid scan state",
			LdErr.EINVPATH:"Invalid path",
			LdErr.EINVCONFIG:"Invalid configuration",
			}
		return err_strmap.get(self, "Unknown error")

class LdException(Exception):
	def __init__(self, error, entry, msg = None):
		super().__init__(error, entry, msg)
		self.error = error
		self.entry = entry
		self.msg = msg

	def __str__(self):
		if self.msg is not None:
			return str(self.error) + ": " + self.msg
		if hasattr(self.entry, 'path'):
			return str(self.error) + ": \n\t" + self.entry.path
		elif self.entry is not None:
			return str(self.error) + ": \n\t" + str(self.entry)
		else:
			return str(self.error)


LdScanOutcome = namedtuple("LdScanOutcome", ["ok", "state", "error"])
LdAggregateOutcome = namedtuple("LdAggregateOutcome", ["ok", "state", "error"])


def _clamp(value, low, high):
	return type(value)(max(low, min(high, value)))

@dataclass
class LdConfig:
	pregain: float = 0.0
	opts: LdOpts = LdOpts.DEFAULT
	max_true_peak_level: float = float(LdConsts.DEF_TRUE_PEAK)
	threads: Optional[int] = None
	extensions: FrozenSet[str] = field(default_factory=lambda: SUPPORTED_EXTENSIONS)
	tag_mode: LdTagMode = LdTagMode.SKIP
	id3v2_version: int = 4
	csv_path: Optional[str] = None
	verbosity: int = 2

	def __post_init__(self):
		self.pregain = _clamp(float(self.pregain), LdConsts.MIN_LEVEL, LdConsts.MAX_PREGAIN)
		self.max_true_peak_level = _clamp(float(self.max_true_peak_level),
						  LdConsts.MIN_LEVEL, LdConsts.MAX_TRUE_PEAK)
		self.id3v2_version = _clamp(int(self.id3v2_version), 3, 4)

		# Never go above what the hardware gives us, and
		# default to all of it.
		max_threads = os.cpu_count() or 1
		if self.threads is None or self.threads <= 0:
			self.threads = max_threads
		else:
			self.threads = min(self.threads, max_threads)

		self.extensions = frozenset(ext for ext in self.extensions
					    if ext in SUPPORTED_EXTENSIONS)
		if not self.extensions:
			raise LdException(LdErr.EINVCONFIG, None, "No supported extensions selected")

	@property
	def scan_album(self):
		return LdOpts.OALBUM in self.opts

	@property
	def prevent_clipping(self):
		return LdOpts.OPREVENTCLIP in self.opts

	@property
	def unit(self):
		return "LU" if LdOpts.OLUFS in self.opts else "dB"

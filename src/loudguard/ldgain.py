#
# Copyright 2020 - 2025 Nick Kossifidis <mickflemm@gmail.com>
#
# SPDX-License-Identifier: GPL-2.0-or-later
#
# This file is part of loudness guard, a UoC Radio project.
# For more infos visit https://rastapank.radio.uoc.gr
#
# Gain / clipping calculations
#

import math
from collections import namedtuple
from logging import (
	debug,
	warning
)
from loudguard import (
	LdConsts,
	LdOpts,
	OPUS_CODEC
)

# Gain and peak of one scope (track or album) after clipping evaluation,
# clips is only left set when clipping prevention is off.
LdGainResult = namedtuple("LdGainResult", ["gain", "peak", "new_peak", "clips", "clip_prevented"])

# Both scopes of a track, album is None in track mode, clip_prevented
# is shared among them.
LdGainEvaluation = namedtuple("LdGainEvaluation", ["track", "album", "clip_prevented"])


def lufs_to_rg(loudness):
	return float(LdConsts.RG2_REF_LOUDNESS) - loudness

# Opus is always based on -23 LUFS, we have to adapt
def effective_pregain(pregain, codec):
	if codec == OPUS_CODEC:
		return pregain + float(LdConsts.OPUS_REF_OFFSET)
	return pregain

def compute_gain(loudness, pregain):
	return lufs_to_rg(loudness) + pregain

def reference_loudness(pregain):
	return lufs_to_rg(-pregain)

def peak_limit(max_true_peak_level):
	return math.pow(10.0, max_true_peak_level / 20.0)

def apply_gain(gain, peak):
	return math.pow(10.0, gain / 20.0) * peak

def to_dbtp(linear):
	if linear <= 0.0:
		return float("-inf")
	return 20.0 * math.log10(linear)

# Q7.8 fixed point, as used by Opus R128_*_GAIN tags
def gain_to_q78num(gain):
	return int(round(gain * 256.0))

# Peaks within float rounding of the ceiling don't clip
def exceeds_limit(peak_after, limit):
	return peak_after > limit and not math.isclose(peak_after, limit, rel_tol=1e-9)


def check_clipping(gain, peak, max_true_peak_level, prevent_clipping):
	"""
	Evaluate one gain/peak pair against the true peak ceiling, and lower
	the gain so that the peak after gain lands exactly on the ceiling
	when prevent_clipping is set.
	"""
	# Silent tracks have no finite gain, there is nothing to evaluate
	if not math.isfinite(gain):
		return LdGainResult(gain, peak, peak, False, False)

	limit = peak_limit(max_true_peak_level)
	peak_after = apply_gain(gain, peak)
	clips = exceeds_limit(peak_after, limit)
	clip_prevented = False

	if clips and prevent_clipping:
		gain = gain - (math.log10(peak_after / limit) * 20.0)
		clips = False
		clip_prevented = True

	return LdGainResult(gain, peak, apply_gain(gain, peak), clips, clip_prevented)


def evaluate_gains(track, config):
	"""
	Run the clipping evaluation for the track scope and, when the
	track carries album results, for the album scope.
	"""
	prevent = config.prevent_clipping
	level = config.max_true_peak_level

	track_result = check_clipping(track.gain, track.peak, level, prevent)

	album_result = None
	if track.album_gain is not None:
		album_result = check_clipping(track.album_gain, track.album_peak, level, prevent)

	clip_prevented = track_result.clip_prevented or (
		album_result is not None and album_result.clip_prevented)

	will_clip = track_result.clips or (album_result is not None and album_result.clips)
	if will_clip and LdOpts.ONOCLIPWARN not in config.opts:
		warning("Gain will cause clipping:\n\t%s", track.path)

	debug("Gains for %s: track %.2f dB%s", track.name, track_result.gain,
	      f", album {album_result.gain:.2f} dB" if album_result is not None else "")

	return LdGainEvaluation(track_result, album_result, clip_prevented)

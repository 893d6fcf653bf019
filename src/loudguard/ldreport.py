#
# Copyright 2020 - 2025 Nick Kossifidis <mickflemm@gmail.com>
#
# SPDX-License-Identifier: GPL-2.0-or-later
#
# This file is part of loudness guard, a UoC Radio project.
# For more infos visit https://rastapank.radio.uoc.gr
#
# Result reporting, one consumer thread owns every output
#

import csv
import math
import sys
import queue
import threading
from collections import namedtuple
from logging import (
	debug,
	error
)
from loudguard import (
	LdOpts,
	LdErr,
	LdException,
	OPUS_CODEC
)
from loudguard.ldgain import (
	to_dbtp,
	gain_to_q78num
)
from tqdm import tqdm

LdReportRecord = namedtuple("LdReportRecord", [
	"kind", "path", "loudness", "loudness_range", "peak", "peak_dbtp",
	"reference", "will_clip", "clip_prevented", "gain", "new_peak",
	"new_peak_dbtp", "codec"
])


def track_record(track, evaluation):
	result = evaluation.track
	album = evaluation.album
	will_clip = result.clips or (album is not None and album.clips)
	return LdReportRecord("File", track.path, track.loudness, track.loudness_range,
			      track.peak, to_dbtp(track.peak), track.reference, will_clip,
			      evaluation.clip_prevented, result.gain, result.new_peak,
			      to_dbtp(result.new_peak), track.codec)

def album_record(folder, track, evaluation):
	album = evaluation.album
	return LdReportRecord("Album", folder.directory, folder.loudness, folder.loudness_range,
			      folder.peak, to_dbtp(folder.peak), track.reference, album.clips,
			      evaluation.clip_prevented, album.gain, album.new_peak,
			      to_dbtp(album.new_peak), track.codec)


class LdReporter:

	# Message kinds on the queue
	_RECORD = "record"
	_FAILURE = "failure"
	_PROGRESS = "progress"
	_MESSAGE = "message"

	def __init__(self, config, total=None, progress=True):
		self.config = config
		self.unit = config.unit
		self.tab_output = LdOpts.OTABOUTPUT in config.opts
		self.csv_file = None
		self.csv_writer = None
		self.pbar = None
		self.total = total
		self.progress = progress
		self._queue = queue.Queue()
		self._thread = None

	def __enter__(self):
		if self.config.csv_path is not None:
			try:
				self.csv_file = open(self.config.csv_path, "w", newline="", encoding="utf-8")
			except OSError as err:
				raise LdException(LdErr.EINVPATH, self.config.csv_path,
						  f"Failed to open file: {err}") from err
			self.csv_writer = csv.writer(self.csv_file)
			self.csv_writer.writerow([
				"Type", "Location", "Loudness [LUFS]", f"Range [{self.unit}]",
				"True Peak", "True Peak [dBTP]", "Reference [LUFS]", "Will clip",
				"Clip prevent", f"Gain [{self.unit}]", "New Peak", "New Peak [dBTP]"])

		if self.tab_output:
			self._write("File\tLoudness\tRange\tTrue_Peak\tTrue_Peak_dBTP\tReference\t"
				    "Will_clip\tClip_prevent\tGain\tNew_Peak\tNew_Peak_dBTP")

		if self.progress:
			self.pbar = tqdm(total=self.total, unit="track", leave=False,
					 disable=self.config.verbosity < 1)

		self._thread = threading.Thread(target=self._consume, name="ld-reporter", daemon=True)
		self._thread.start()
		return self

	def __exit__(self, exc_type, exc_value, traceback):
		self._queue.put(None)
		self._thread.join()
		if self.pbar is not None:
			self.pbar.close()
		if self.csv_file is not None:
			self.csv_file.flush()
			self.csv_file.close()
		return False

	#
	# PRODUCER SIDE
	#

	def submit(self, record):
		self._queue.put((LdReporter._RECORD, record))

	def failure(self, path, err):
		self._queue.put((LdReporter._FAILURE, (path, err)))

	def advance(self, count=1):
		self._queue.put((LdReporter._PROGRESS, count))

	# Extra information, only shown on the highest verbosity
	def message(self, text):
		self._queue.put((LdReporter._MESSAGE, text))

	#
	# CONSUMER SIDE
	#

	@staticmethod
	def _write(line, file=None):
		tqdm.write(line, file=file if file is not None else sys.stdout)

	def _consume(self):
		while True:
			item = self._queue.get()
			if item is None:
				break
			kind, payload = item
			try:
				if kind == LdReporter._RECORD:
					self._emit(payload)
				elif kind == LdReporter._FAILURE:
					self._emit_failure(*payload)
				elif kind == LdReporter._PROGRESS and self.pbar is not None:
					self.pbar.update(payload)
				elif kind == LdReporter._MESSAGE and self.config.verbosity >= 3:
					self._write(payload)
			except (OSError, ValueError) as err:
				error("Report output failed: %s", err)

	def _emit(self, record):
		debug("Reporting %s: %s", record.kind, record.path)
		if self.csv_writer is not None:
			self.csv_writer.writerow(self._csv_row(record))
		if self.tab_output:
			self._write(self._tab_line(record))
		elif self.config.verbosity >= 2:
			self._write(self._human_text(record))

	def _emit_failure(self, path, err):
		if self.config.verbosity >= 1:
			self._write(f"[{path}] {err}", file=sys.stderr)

	#
	# FORMATTING
	#

	def _csv_row(self, record):
		return [
			record.kind,
			record.path,
			f"{record.loudness:.2f}",
			f"{record.loudness_range:.2f}",
			f"{record.peak:.6f}",
			f"{record.peak_dbtp:.2f}",
			f"{record.reference:.2f}",
			int(record.will_clip),
			int(record.clip_prevented),
			f"{record.gain:.2f}",
			f"{record.new_peak:.6f}",
			f"{record.new_peak_dbtp:.2f}",
		]

	def _tab_line(self, record):
		location = record.path if record.kind == "File" else record.kind
		return "\t".join([
			location,
			f"{record.loudness:.2f} LUFS",
			f"{record.loudness_range:.2f} {self.unit}",
			f"{record.peak:.6f}",
			f"{record.peak_dbtp:.2f} dBTP",
			f"{record.reference:.2f} LUFS",
			"Y" if record.will_clip else "N",
			"Y" if record.clip_prevented else "N",
			f"{record.gain:.2f} {self.unit}",
			f"{record.new_peak:.6f}",
			f"{record.new_peak_dbtp:.2f} dBTP",
		])

	def _human_text(self, record):
		title = "Track" if record.kind == "File" else "Album"
		gain = f"{record.gain:.2f} {self.unit}"
		if record.codec == OPUS_CODEC and math.isfinite(record.gain):
			gain += f" ({gain_to_q78num(record.gain)})"
		if record.clip_prevented:
			gain += " (corrected to prevent clipping)"
		return (f"\n{title}: {record.path}\n"
			f" Loudness: {record.loudness:.2f} LUFS\n"
			f" Range:    {record.loudness_range:.2f} {self.unit}\n"
			f" Peak:     {record.peak:.6f} ({record.peak_dbtp:.2f} dBTP)\n"
			f" Gain:     {gain}")

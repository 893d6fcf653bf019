#
# Copyright 2020 - 2025 Nick Kossifidis <mickflemm@gmail.com>
#
# SPDX-License-Identifier: GPL-2.0-or-later
#
# This file is part of loudness guard, a UoC Radio project.
# For more infos visit https://rastapank.radio.uoc.gr
#
# Main entry point / worker
#

import math
import concurrent.futures
import traceback
from logging import (
	debug,
	info,
	warning,
	error
)
from loudguard import (
	LdErr,
	LdOpts
)
from loudguard.ldtrack import (
	LdTrack,
	LdScanner
)
from loudguard.ldfolder import LdFolder
from loudguard.ldlibrary import LdLibrary
from loudguard.ldgain import evaluate_gains
from loudguard.ldtags import LdTagWriter
from loudguard.ldreport import (
	LdReporter,
	track_record,
	album_record
)


class LdWorker:

	def __init__(self, config, paths, scanner=None, tagger=None,
		     reporter_class=LdReporter, progress=True):
		self.config = config
		self.library = LdLibrary(paths, LdOpts.ORECURSIVE in config.opts, config.extensions)
		self.scanner = scanner if scanner is not None else LdScanner()
		self.tagger = tagger if tagger is not None else LdTagWriter(config)
		self.combine = self.scanner.meter_class.combine
		self.reporter_class = reporter_class
		self.progress = progress
		self.reporter = None

	#
	# HELPERS
	#

	def _finalize_track(self, track):
		evaluation = evaluate_gains(track, self.config)
		track.gains = evaluation

		# No finite gain to write for silent tracks
		if not math.isfinite(evaluation.track.gain):
			warning("Not tagging silent track:\n\t%s", track.path)
		else:
			# Tag failures get reported but don't fail the track
			tag_err = self.tagger.write(track)
			if tag_err is not None:
				self.reporter.failure(track.path, tag_err)

		self.reporter.submit(track_record(track, evaluation))
		return evaluation

	def _finalize_folder(self, folder):
		outcome = folder.aggregate(self.config.pregain, self.combine)
		if not outcome.ok:
			self.reporter.failure(folder.directory, outcome.error)

		# Tracks that made it still get their own results,
		# album fields are only there if aggregation went well.
		last = None
		for track in folder.tracks:
			if not track.is_success():
				continue
			last = (track, self._finalize_track(track))

		if outcome.ok and last is not None:
			track, evaluation = last
			self.reporter.submit(album_record(folder, track, evaluation))

		folder.release_meters()
		return LdErr.EOK if outcome.ok else outcome.error.error

	def _scan_track(self, track):
		outcome = self.scanner.scan(track, self.config.pregain)
		if not outcome.ok:
			self.reporter.failure(track.path, outcome.error)
			return outcome.error.error
		self.reporter.message(f"{track.path}: {track.codec} in {track.container}")
		return LdErr.EOK

	def _track_task(self, track):
		status = self._scan_track(track)
		if status is LdErr.EOK:
			self._finalize_track(track)
			track.release_meter()
		self.reporter.advance()
		return status

	def _album_task(self, folder, track):
		# The folder has to be released no matter what, or
		# its siblings never get finalized.
		try:
			status = self._scan_track(track)
		except Exception as err:
			error("Got unhandled exception while processing:\n\t%s\n\t%s", track.path, err)
			traceback.print_exc()
			self.reporter.failure(track.path, err)
			status = LdErr.EUNKNOWN
		self.reporter.advance()

		# Only the task that finished the folder's last
		# track goes on, the rest are done.
		if not folder.release():
			return status

		debug("Finalizing album:\n\t%s", folder.directory)
		folder_status = self._finalize_folder(folder)
		return status if status is not LdErr.EOK else folder_status

	def _remove_task(self, track):
		outcome = self.scanner.scan(track, self.config.pregain, want_loudness=False)
		if not outcome.ok:
			self.reporter.failure(track.path, outcome.error)
			self.reporter.advance()
			return outcome.error.error

		tag_err = self.tagger.clear(track)
		self.reporter.advance()
		if tag_err is not None:
			self.reporter.failure(track.path, tag_err)
			return tag_err.error
		return LdErr.EOK

	def _run(self, units, task, total):
		"""
		Run one task per unit on the pool and return the first
		failure, or EOK if everything went well.
		"""
		status = LdErr.EOK
		with self.reporter_class(self.config, total, self.progress) as reporter:
			self.reporter = reporter
			with concurrent.futures.ThreadPoolExecutor(max_workers=self.config.threads) as executor:
				future_to_unit = {executor.submit(task, *unit): unit for unit in units}

				for future in concurrent.futures.as_completed(future_to_unit):
					unit = future_to_unit[future]
					try:
						result = future.result()
					except Exception as err:
						error("Got unhandled exception while processing:\n\t%s\n\t%s",
						      unit[-1].path, err)
						traceback.print_exc()
						result = LdErr.EUNKNOWN
					if result is not LdErr.EOK and status is LdErr.EOK:
						status = result
			self.reporter = None
		return status

	#
	# ENTRY POINTS
	#

	def scan_library(self):
		if self.config.scan_album:
			folders = [LdFolder(directory, paths) for directory, paths
				   in self.library.get_supported_audio_files_by_folder().items()]
			units = [(folder, track) for folder in folders for track in folder.tracks]
			info("Album scan: %i tracks in %i folders", len(units), len(folders))
			task = self._album_task
		else:
			units = [(LdTrack(path),) for path in self.library.get_supported_audio_files()]
			info("Track scan: %i tracks", len(units))
			task = self._track_task

		if not units:
			warning("No supported audio files found")
			return LdErr.EOK

		return self._run(units, task, len(units))

	def remove_tags(self):
		units = [(LdTrack(path),) for path in self.library.get_supported_audio_files()]
		info("Removing tags from %i tracks", len(units))
		if not units:
			warning("No supported audio files found")
			return LdErr.EOK
		return self._run(units, self._remove_task, len(units))

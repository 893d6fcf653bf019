#
# Copyright 2020 - 2025 Nick Kossifidis <mickflemm@gmail.com>
#
# SPDX-License-Identifier: GPL-2.0-or-later
#
# This file is part of loudness guard, a UoC Radio project.
# For more infos visit https://rastapank.radio.uoc.gr
#
# Library discovery
#

import os
from collections import defaultdict
from logging import (
	debug,
	warning
)
from loudguard import (
	SUPPORTED_EXTENSIONS,
	LdErr,
	LdException
)


def parse_extensions(extensions):
	"""
	Turn a comma separated list ("mp3,.flac") into a set of
	supported extensions, unsupported ones are dropped.
	"""
	parsed = set()
	for ext in extensions.split(","):
		ext = ext.strip().lower()
		if len(ext) < 2:
			continue
		if not ext.startswith("."):
			ext = "." + ext
		if ext not in SUPPORTED_EXTENSIONS:
			warning("Ignoring unsupported extension: %s", ext)
			continue
		parsed.add(ext)
	return frozenset(parsed)


class LdLibrary:

	def __init__(self, paths, recursive=False, extensions=SUPPORTED_EXTENSIONS):
		if not paths:
			raise LdException(LdErr.EINVPATH, None, "No files or folders provided!")
		self.paths = list(paths)
		self.recursive = recursive
		self.extensions = frozenset(extensions) & SUPPORTED_EXTENSIONS

	#
	# HELPERS
	#

	def is_supported_audio_file(self, path):
		return (os.path.isfile(path) and
			os.path.splitext(path)[1].lower() in self.extensions)

	def _is_only_directories(self):
		return all(os.path.isdir(path) for path in self.paths)

	def _scan_dir(self, path):
		try:
			with os.scandir(path) as entries:
				for entry in entries:
					try:
						if entry.is_dir(follow_symlinks=False):
							if self.recursive:
								yield from self._scan_dir(entry.path)
						elif self.is_supported_audio_file(entry.path):
							yield entry.path
					except OSError as err:
						warning("Could not access path:\n\t%s\n\t%s", entry.path, err)
		except PermissionError as err:
			# Same as skipping permission denied entries
			warning("Could not access path:\n\t%s\n\t%s", path, err)

	#
	# ENTRY POINTS
	#

	def get_supported_audio_files(self):
		audio_files = set()

		if self._is_only_directories():
			for path in self.paths:
				audio_files.update(self._scan_dir(path))
		else:
			for path in self.paths:
				if self.is_supported_audio_file(path):
					audio_files.add(path)
				else:
					debug("Skipping unsupported path:\n\t%s", path)

		return sorted(audio_files)

	def get_supported_audio_files_by_folder(self):
		by_folder = defaultdict(list)
		for path in self.get_supported_audio_files():
			by_folder[os.path.dirname(path)].append(path)
		return dict(sorted(by_folder.items()))

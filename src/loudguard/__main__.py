#!/bin/python3

#
# Copyright 2020 - 2025 Nick Kossifidis <mickflemm@gmail.com>
#
# SPDX-License-Identifier: GPL-2.0-or-later
#
# This file is part of loudness guard, a UoC Radio project.
# For more infos visit https://rastapank.radio.uoc.gr
#
# Main entry point
#

import sys
import os
import argparse
import time
import tempfile
# Import logging functions directly
from logging import basicConfig, info, warning, error, debug
from logging import DEBUG, INFO

from loudguard.ldworker import LdWorker
from loudguard.ldlibrary import parse_extensions
from loudguard import (
	__version__,
	SUPPORTED_EXTENSIONS,
	LdConfig,
	LdConsts,
	LdErr,
	LdException,
	LdOpts,
	LdTagMode
)
import traceback


def parse_arguments(argv=None):
	parser = argparse.ArgumentParser(
		prog="loudguard",
		description="Loudness Guardian - ReplayGain 2.0 loudness scanner and tagger (EBU R128)"
	)

	parser.add_argument("files", nargs="+", metavar="FILES",
			    help="Audio files, or folders containing audio files")

	scope = parser.add_mutually_exclusive_group()
	scope.add_argument("--track", "-t", action="store_true",
			   help="Calculate track gain only (default)")
	scope.add_argument("--album", "-a", action="store_true",
			   help="Calculate album gain (and track gain), one album per folder")

	parser.add_argument("--prevent-clipping", "-k", action="store_true",
			    help="Lower track/album gain to avoid clipping (<= -1 dBTP)")

	parser.add_argument("--max-true-peak-level", "-K", type=float, default=None,
			    help="Avoid clipping, max true peak level = N dBTP (implies -k)")

	parser.add_argument("--ignore-clipping", "-i", action="store_true",
			    help="Don't warn about clipping")

	parser.add_argument("--pre-gain", "-G", type=float, default=0.0,
			    help="Apply N dB/LU pre-gain value (-5 for -23 LUFS target)")

	parser.add_argument("--tagmode", "-S", choices=[mode.value for mode in LdTagMode],
			    default=LdTagMode.SKIP.value,
			    help="d: delete tags, i: write standard tags, e: write extended tags, "
				 "s: don't write tags (default)")

	parser.add_argument("--lufs", "-u", action="store_true",
			    help="Use LU/LUFS units instead of dB")

	parser.add_argument("--lowercase", "-L", action="store_true",
			    help="Force lowercase tags (MP3/MP4/WMA/WAV/AIFF)")

	parser.add_argument("--striptags", "-s", action="store_true",
			    help="Strip tag types other than ID3v2 from MP3 and APEv2 from WavPack/APE")

	parser.add_argument("--id3v2version", "-I", type=int, choices=[3, 4], default=4,
			    help="ID3v2 version to use for MP3/WAV/AIFF (default: 4)")

	parser.add_argument("--multithread", "-M", type=int, default=0,
			    help="Number of worker threads (default: number of CPUs)")

	parser.add_argument("--output-tab", "-o", action="store_true",
			    help="Database-friendly tab delimited list output")

	parser.add_argument("--output-csv", "-O", default=None, metavar="FILE",
			    help="Write results to a CSV file")

	parser.add_argument("--recursive", "-r", action="store_true",
			    help="Scan folders recursively")

	parser.add_argument("--extensions", "-E", default=None,
			    help="Comma separated list of extensions to scan (default: "
				 + ",".join(sorted(ext[1:] for ext in SUPPORTED_EXTENSIONS)) + ")")

	parser.add_argument("--verbosity", "-V", type=int, choices=[0, 1, 2, 3], default=2,
			    help="0: quiet, 1: errors only, 2: results (default), 3: everything")

	parser.add_argument("--quiet", "-q", action="store_true",
			    help="Don't print anything on stdout/stderr (same as -V 0)")

	parser.add_argument("--log", "-l",
			    default=os.path.join(tempfile.gettempdir(), "loudguard.log"),
			    help="Path to the log file (default: temporary directory / loudguard.log)")

	parser.add_argument("--verbose", "-v", action="count", default=0,
			    help="Increase log verbosity")

	parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

	args = parser.parse_args(argv)

	log_dir = os.path.dirname(args.log)
	if log_dir and not os.path.isdir(log_dir):
		parser.error(f"Log directory does not exist: {log_dir}")

	if args.output_csv is not None:
		csv_dir = os.path.dirname(args.output_csv)
		if csv_dir and not os.path.isdir(csv_dir):
			parser.error(f"CSV output directory does not exist: {csv_dir}")

	for path in args.files:
		if not os.path.exists(path):
			parser.error(f"Path does not exist: {path}")

	return args

def build_config(args):
	opts = LdOpts.DEFAULT
	if args.album:
		opts |= LdOpts.OALBUM
	if args.prevent_clipping or args.max_true_peak_level is not None:
		opts |= LdOpts.OPREVENTCLIP
	if args.ignore_clipping:
		opts |= LdOpts.ONOCLIPWARN
	if args.recursive:
		opts |= LdOpts.ORECURSIVE
	if args.lowercase:
		opts |= LdOpts.OLOWERCASE
	if args.striptags:
		opts |= LdOpts.OSTRIPTAGS
	if args.lufs:
		opts |= LdOpts.OLUFS
	if args.output_tab:
		opts |= LdOpts.OTABOUTPUT

	if args.max_true_peak_level is not None:
		max_true_peak_level = args.max_true_peak_level
	else:
		max_true_peak_level = float(LdConsts.DEF_TRUE_PEAK)

	if args.extensions is not None:
		extensions = parse_extensions(args.extensions)
	else:
		extensions = SUPPORTED_EXTENSIONS

	return LdConfig(pregain=args.pre_gain,
			opts=opts,
			max_true_peak_level=max_true_peak_level,
			threads=args.multithread,
			extensions=extensions,
			tag_mode=LdTagMode(args.tagmode),
			id3v2_version=args.id3v2version,
			csv_path=args.output_csv,
			verbosity=0 if args.quiet else args.verbosity)

def main(argv=None):
	args = parse_arguments(argv)

	# Set log level based on verbosity
	log_levels = [INFO, DEBUG]  # 0=INFO, 1+=DEBUG
	log_level = log_levels[min(args.verbose, len(log_levels)-1)]

	# Setup logging
	basicConfig(filename=args.log, level=log_level,
		    format='%(asctime)s - %(levelname)s - %(message)s')

	try:
		config = build_config(args)
	except LdException as err:
		error("Invalid configuration: %s", err)
		print('\033[91m'"Error:", err, '\033[0m', file=sys.stderr)
		return 1

	# Banners only go to the terminal in the human readable mode
	chatty = config.verbosity >= 2 and LdOpts.OTABOUTPUT not in config.opts

	if chatty:
		print('\033[96m'"Loudness Guardian starting..."'\033[0m')
		print('\033[95m'"Mode:\t\t", "album" if config.scan_album else "track", '\033[0m')
		print('\033[95m'"Threads:\t", config.threads, '\033[0m')
		print('\033[95m'"Logfile at:\t", args.log, '\033[0m')
	start_time = time.monotonic()
	if chatty:
		print('\033[92m'"Started on", time.ctime(), '\033[0m')

	info("Loudness Guardian starting...")
	info("Options: %s", ", ".join(str(opt) for opt in LdOpts if opt in config.opts) or "none")
	info("Pre-gain: %.2f, max true peak: %.2f dBTP, tag mode: %s",
	     config.pregain, config.max_true_peak_level, config.tag_mode)
	info("Started on %s", time.ctime())

	# Track success/failure
	exit_code = 0

	try:
		worker = LdWorker(config, args.files)

		if config.tag_mode is LdTagMode.DELETE:
			ret = worker.remove_tags()
		else:
			ret = worker.scan_library()

		if ret is not LdErr.EOK:
			error("Scan finished with errors: %s", ret)
			exit_code = 1

	except LdException as err:
		error("%s", err)
		print('\033[91m'"Error:", err, '\033[0m', file=sys.stderr)
		exit_code = 1

	except KeyboardInterrupt:
		warning("Processing interrupted by keyboard interrupt")
		exit_code = 1

	except Exception as e:
		error("Unexpected error: %s", e)
		print('\033[91m'"Error:", e, '\033[0m', file=sys.stderr)
		traceback.print_exc()
		exit_code = 1

	finally:
		# Print completion message
		end_time = time.monotonic()
		elapsed_time = end_time - start_time
		process_time = time.process_time()

		if chatty:
			print('\033[93m'"Finished in", elapsed_time, "sec, process time:", process_time, '\033[0m')
		info("Finished in %f sec, process time: %f", elapsed_time, process_time)
		debug("Exit code: %i", exit_code)

	return exit_code

if __name__ == "__main__":
	sys.exit(main())

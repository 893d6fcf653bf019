#
# Shared fakes for the decoder / meter / tagger collaborators
#

import math
import threading

import pytest

from loudguard import (
	LdConfig,
	LdErr,
	LdException
)
from loudguard.lddecoder import LdStreamInfo
from loudguard.ldtrack import LdScanner


class FakeMedia:

	def __init__(self, container="flac", codec="flac", channels=2, sample_rate=44100,
		     loudness=-20.0, loudness_range=5.0, peaks=(0.5, 0.5), buffers=3,
		     open_error=False, stream_error=False, crash=False):
		self.container = container
		self.codec = codec
		self.channels = channels
		self.sample_rate = sample_rate
		self.loudness = loudness
		self.loudness_range = loudness_range
		self.peaks = peaks
		self.buffers = buffers
		self.open_error = open_error
		self.stream_error = stream_error
		self.crash = crash


# Carries the media it came from, so that the fake
# meter knows what to "measure".
class FakeBuffer(list):

	def __init__(self, samples, media):
		super().__init__(samples)
		self.media = media


class FakeDecoder:

	library = {}

	def __init__(self, path):
		self.path = path
		self.media = None

	def __enter__(self):
		return self

	def __exit__(self, exc_type, exc_value, traceback):
		self.close()
		return False

	def open(self):
		media = self.library.get(self.path)
		if media is None or media.open_error:
			raise LdException(LdErr.EOPEN, self.path, "Could not open input")
		self.media = media
		return LdStreamInfo(media.container, media.codec, media.channels, media.sample_rate)

	def frames(self):
		for index in range(self.media.buffers):
			if self.media.stream_error and index == 1:
				raise LdException(LdErr.ESTREAM, self.path, "Error while decoding")
			if self.media.crash and index == 1:
				raise RuntimeError("decoder crashed")
			yield FakeBuffer([0.0] * (self.media.channels * 4), self.media)

	def close(self):
		self.media = None


class FakeMeter:

	combine_calls = 0
	_lock = threading.Lock()

	def __init__(self, channels, sample_rate):
		self.channels = channels
		self.sample_rate = sample_rate
		self.media = None
		self.frames = 0

	def feed(self, buffer):
		self.frames += len(buffer) // self.channels
		self.media = buffer.media

	def integrated_loudness(self):
		if self.media is None:
			return float("-inf")
		return self.media.loudness

	def loudness_range(self):
		return self.media.loudness_range

	def true_peak(self, channel):
		if channel >= len(self.media.peaks):
			raise LdException(LdErr.EMETER, None, "No such channel")
		return self.media.peaks[channel]

	# Energy weighted, like gating over the concatenated input would
	@classmethod
	def combine(cls, meters):
		with cls._lock:
			cls.combine_calls += 1
		# Silent input never makes it through the gate
		active = [meter for meter in meters if math.isfinite(meter.media.loudness)]
		if not active:
			return float("-inf"), 0.0
		total = sum(meter.frames for meter in active)
		energy = sum(math.pow(10.0, meter.media.loudness / 10.0) * meter.frames
			     for meter in active) / total
		return 10.0 * math.log10(energy), max(meter.media.loudness_range for meter in active)


class FakeTagger:

	def __init__(self, fail_paths=()):
		self.fail_paths = set(fail_paths)
		self.written = []
		self.cleared = []
		self._lock = threading.Lock()

	def _result(self, track):
		if track.path in self.fail_paths:
			return LdException(LdErr.ETAGWRITE, track.path, "read only")
		return None

	def write(self, track):
		with self._lock:
			self.written.append(track)
		return self._result(track)

	def clear(self, track):
		with self._lock:
			self.cleared.append(track)
		return self._result(track)


@pytest.fixture
def fake_decoder():
	class Decoder(FakeDecoder):
		library = {}
	return Decoder

@pytest.fixture
def fake_meter():
	class Meter(FakeMeter):
		combine_calls = 0
		_lock = threading.Lock()
	return Meter

@pytest.fixture
def scanner(fake_decoder, fake_meter):
	return LdScanner(fake_decoder, fake_meter)

@pytest.fixture
def fake_tagger():
	return FakeTagger()

@pytest.fixture
def quiet_config():
	return LdConfig(verbosity=0)

import pytest

import compressor
from compressor import Zstd, Pigz, Xz, Pbzip2, Gzip, Bzip2, Lz4


class TestInvocation:
    def test_zstd_zero_threads_means_all_cores(self):
        c = Zstd(threads=0, level=9)
        assert c.stream_command() == ['zstd', '-q', '-9', '-T0', '-c']
        assert c.file_command('x.sql') == ['zstd', '-q', '-f', '-9', '-T0', 'x.sql']

    def test_zstd_high_level_needs_ultra(self):
        assert Zstd(level=22).stream_command() == ['zstd', '-q', '--ultra', '-22', '-c']

    def test_xz_zero_threads_means_all_cores(self):
        assert Xz(threads=0).file_command('a') == ['xz', '-f', '-T0', 'a']

    def test_pigz_zero_threads_omits_flag(self):
        assert Pigz(threads=0, level=6).stream_command() == ['pigz', '-6', '-c']

    def test_pigz_threads_is_separate_argument(self):
        assert Pigz(threads=4).stream_command() == ['pigz', '-p', '4', '-c']

    def test_pbzip2_threads(self):
        assert Pbzip2(threads=0).stream_command() == ['pbzip2', '-c']
        assert Pbzip2(threads=2).stream_command() == ['pbzip2', '-p2', '-c']

    def test_single_threaded_ignores_threads(self):
        assert Gzip(threads=8, level=1).stream_command() == ['gzip', '-1', '-c']
        assert Bzip2(threads=8).file_command('a') == ['bzip2', '-f', 'a']

    def test_lz4_names_its_output(self):
        assert Lz4().file_command('a.sql') == ['lz4', '-q', '-f', 'a.sql', 'a.sql.lz4']

    @pytest.mark.parametrize("cls,removes", [
        (Zstd, False), (Lz4, False),
        (Pigz, True), (Xz, True), (Pbzip2, True), (Gzip, True), (Bzip2, True),
    ])
    def test_removes_source(self, cls, removes):
        assert cls.REMOVES_SOURCE is removes

    def test_extensions(self):
        assert {name: cls.EXTENSION for name, cls in compressor.COMPRESSORS.items()} == {
            'zstd': '.zst', 'pigz': '.gz', 'xz': '.xz', 'pbzip2': '.bz2',
            'gzip': '.gz', 'bzip2': '.bz2', 'lz4': '.lz4',
        }

    def test_compressed_path(self):
        assert Gzip().compressed_path('/b/x.sql.work') == '/b/x.sql.work.gz'


class TestSelect:
    def test_explicit(self):
        c = compressor.select('xz', threads=2, level=3)
        assert isinstance(c, Xz)
        assert (c.threads, c.level) == (2, 3)

    def test_none_means_plain(self):
        assert compressor.select('none') is None

    def test_unknown(self):
        with pytest.raises(compressor.UnknownCompressor):
            compressor.select('rar')

    def test_auto_picks_first_usable_in_preference_order(self):
        probed = []

        def probe(cls):
            probed.append(cls.NAME)
            return cls.NAME in ('gzip', 'bzip2')

        c = compressor.select(None, probe=probe)
        assert isinstance(c, Gzip)
        assert probed == ['zstd', 'pigz', 'xz', 'pbzip2', 'gzip']

    def test_auto_nothing_usable(self):
        with pytest.raises(compressor.NoCompressorAvailable):
            compressor.select('', probe=lambda cls: False)

    def test_gzip_is_available(self):
        assert Gzip.is_available()

    def test_missing_binary_is_not_available(self, monkeypatch):
        monkeypatch.setattr(Gzip, 'BINARY', 'no-such-compressor-binary')
        assert not Gzip.is_available()


class TestLevels:
    @pytest.mark.parametrize("cls,level", [
        (Gzip, 15), (Gzip, 0), (Bzip2, 10), (Pbzip2, 0),
        (Xz, 10), (Pigz, 10), (Zstd, 0), (Zstd, 23), (Lz4, 13),
    ])
    def test_out_of_range(self, cls, level):
        with pytest.raises(compressor.InvalidLevel, match=f"level {level}"):
            cls(level=level)

    @pytest.mark.parametrize("cls,level", [
        (Gzip, 1), (Gzip, 9), (Xz, 0), (Pigz, 0), (Pigz, 11), (Zstd, 22), (Lz4, 12),
    ])
    def test_in_range(self, cls, level):
        assert cls(level=level).level == level

    def test_select_checks_level(self):
        with pytest.raises(compressor.InvalidLevel):
            compressor.select('gzip', level=15)

        with pytest.raises(compressor.InvalidLevel):
            compressor.select('', level=99, probe=lambda cls: True)

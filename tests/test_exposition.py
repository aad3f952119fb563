"""Tests for exposition text parsing."""
from __future__ import annotations

import types

from hostpulse import exposition
from hostpulse.exposition import MetricSample, match_family, parse_exposition, parse_labels, parse_line

SAMPLE_BODY = """\
# HELP windows_cpu_time_total Time that processor spent in different modes (dpc, idle, interrupt, privileged, user)
# TYPE windows_cpu_time_total counter
windows_cpu_time_total{core="0,0",mode="dpc"} 12.5
windows_cpu_time_total{mode="idle",core="0,0"} 9876.25
windows_cpu_core_frequency_mhz{core="0,0"} 3701
windows_cs_logical_processors 8
windows_net_bytes_received_total{nic="Intel_R_ Ethernet"} 1.234e+09
windows_os_visible_memory_bytes 3.4204913664e+10
windows_logical_disk_free_bytes{volume="C:"} 1.2e+11
windows_logical_disk_free_bytes{volume="D:"} 5e+10
windows_service_state{name="spooler",state="running"} 1
go_gc_duration_seconds{quantile="0"} 0
"""


class TestExpositionParser:
    """Test parsing of full exposition bodies."""

    def test_parses_only_known_families_in_line_order(self):
        """Test that unknown families are skipped and order is kept."""
        samples = list(parse_exposition(SAMPLE_BODY))

        assert [s.family for s in samples] == [
            exposition.CPU_TIME,
            exposition.CPU_TIME,
            exposition.CORE_FREQUENCY,
            exposition.LOGICAL_PROCESSORS,
            exposition.NET_RECEIVED,
            exposition.MEMORY_TOTAL,
            exposition.DISK_FREE,
            exposition.DISK_FREE,
        ]
        assert samples[3].value == 8
        assert samples[4].value == 1.234e9
        assert samples[4].labels == {"nic": "Intel_R_ Ethernet"}

    def test_parse_exposition_is_lazy(self):
        """Test that samples are yielded from a generator."""
        result = parse_exposition(SAMPLE_BODY)

        assert isinstance(result, types.GeneratorType)
        assert next(result).labels["mode"] == "dpc"

    def test_comments_blank_and_malformed_lines_are_skipped(self):
        """Test that only well-formed sample lines produce samples."""
        body = "\n".join(
            [
                "",
                "# TYPE windows_net_bytes_sent_total counter",
                "windows_net_bytes_sent_total{nic=\"eth\"",
                "windows_net_bytes_sent_total",
                "{nic=\"eth\"} 5",
                'windows_net_bytes_sent_total{nic="eth"} 42',
            ]
        )

        samples = list(parse_exposition(body))

        assert len(samples) == 1
        assert samples[0].value == 42

    def test_empty_body_yields_nothing(self):
        """Test parsing an empty body."""
        assert list(parse_exposition("")) == []


class TestLineParsing:
    """Test parsing of single lines, labels and values."""

    def test_label_order_does_not_matter(self):
        """Test that label order does not change the parsed labels."""
        first = parse_line('windows_cpu_time_total{core="1,0",mode="user"} 5')
        second = parse_line('windows_cpu_time_total{mode="user",core="1,0"} 5')

        assert first is not None and second is not None
        assert first.labels == second.labels == {"core": "1,0", "mode": "user"}

    def test_unparseable_value_degrades_to_zero(self):
        """Test that a garbage value becomes zero."""
        sample = parse_line('windows_os_physical_memory_free_bytes garbage')

        assert sample is not None
        assert sample.value == 0.0

    def test_non_finite_values_degrade_to_zero(self):
        """Test that NaN and infinities become zero."""
        for text in ("NaN", "+Inf", "-Inf"):
            sample = parse_line(f"windows_os_visible_memory_bytes {text}")

            assert sample is not None
            assert sample.value == 0.0

    def test_trailing_timestamp_is_ignored(self):
        """Test that an exposition timestamp does not replace the value."""
        sample = parse_line('windows_net_bytes_received_total{nic="eth"} 1024 1700000000000')

        assert sample is not None
        assert sample.value == 1024

    def test_family_match_uses_name_containment(self):
        """Test family matching by substring."""
        assert match_family("windows_os_visible_memory_bytes") == exposition.MEMORY_TOTAL
        assert match_family("custom_windows_os_visible_memory_bytes") == exposition.MEMORY_TOTAL
        assert match_family("windows_cpu_processor_utility_total") is None

    def test_escaped_label_values(self):
        """Test unescaping of quotes and backslashes in label values."""
        labels = parse_labels(r'nic="Realtek \"Gaming\" NIC",path="C:\\"')

        assert labels == {"nic": 'Realtek "Gaming" NIC', "path": "C:\\"}

    def test_samples_are_hashable(self):
        """Test that samples can be used in sets and as dict keys."""
        first = parse_line('windows_net_bytes_sent_total{nic="eth"} 42')
        second = parse_line('windows_net_bytes_sent_total{nic="eth"} 42')

        assert first == second
        assert len({first, second}) == 1
        assert {first: "seen"}[second] == "seen"
        assert isinstance(hash(MetricSample(name="windows_cs_logical_processors")), int)

import pytest

from pulsedaemon.metrics import (
    DATABASE_PROCESS_NAMES,
    CpuMonitor,
    CpuStats,
    available_memory,
    available_space,
    cmdline_matches,
    cpu_usage,
    find_process_id,
    format_client_ip,
    is_database_running,
    parse_available_memory,
    parse_cpu_stats,
    read_cpu_stats,
    total_disk_space,
    total_physical_memory,
    uptime_in_secs,
)

STAT_TEXT = (
    "cpu  10132153 290696 3084719 46828483 16683 0 25195 0 175628 0\n"
    "cpu0 1393280 32966 572056 13343292 6130 0 17875 0 23933 0\n"
    "intr 1462898 0 0\n"
)

MEMINFO_TEXT = (
    "MemTotal:       16314584 kB\n"
    "MemFree:         1234567 kB\n"
    "MemAvailable:   12345678 kB\n"
    "Buffers:          234567 kB\n"
)


def make_proc(root, processes):
    for pid, cmdline in processes.items():
        directory = root / str(pid)
        directory.mkdir()
        (directory / "cmdline").write_bytes(cmdline)
    (root / "self").mkdir()
    (root / "self" / "cmdline").write_bytes(b"/usr/bin/mongod\0")
    return root


def test_idle_time_counts_idle_and_iowait_only():
    stats = CpuStats(idle=40, iowait=0)
    assert stats.idle_time() == 40
    assert stats.non_idle_time() == 0


def test_guest_time_not_in_total():
    stats = CpuStats(guest=7, guest_nice=3)
    assert stats.total_time() == 0


def test_total_is_idle_plus_non_idle():
    stats = parse_cpu_stats(STAT_TEXT)
    assert stats.total_time() == stats.idle_time() + stats.non_idle_time()


def test_parse_cpu_stats_fields():
    stats = parse_cpu_stats(STAT_TEXT)
    assert stats == CpuStats(10132153, 290696, 3084719, 46828483, 16683, 0, 25195, 0, 175628, 0)


def test_parse_cpu_stats_short_line_leaves_zeros():
    stats = parse_cpu_stats("cpu 1 2 3 4\n")
    assert (stats.user, stats.nice, stats.system, stats.idle) == (1, 2, 3, 4)
    assert stats.iowait == 0
    assert stats.guest_nice == 0


@pytest.mark.parametrize("text", ["intr 1 2 3\n", "", "cpu\n", "cpu0 1 2 3\n"])
def test_parse_cpu_stats_rejects_bad_text(text):
    with pytest.raises(ValueError):
        parse_cpu_stats(text)


def test_read_cpu_stats_from_file(tmp_path):
    path = tmp_path / "stat"
    path.write_text(STAT_TEXT)
    assert read_cpu_stats(path) == parse_cpu_stats(STAT_TEXT)


def test_read_cpu_stats_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_cpu_stats(tmp_path / "missing")


def test_cpu_usage_half_busy():
    previous = CpuStats(user=100, idle=100)
    current = CpuStats(user=150, idle=150)
    assert cpu_usage(previous, current) == pytest.approx(0.5)


def test_cpu_usage_fully_idle_and_fully_busy():
    base = CpuStats(user=10, idle=10)
    assert cpu_usage(base, CpuStats(user=10, idle=90)) == 0.0
    assert cpu_usage(base, CpuStats(user=90, idle=10)) == 1.0


def test_cpu_usage_no_elapsed_time():
    stats = parse_cpu_stats(STAT_TEXT)
    assert cpu_usage(stats, stats) == 0.0


def test_cpu_usage_between_zero_and_one():
    previous = parse_cpu_stats(STAT_TEXT)
    current = CpuStats(
        previous.user + 5,
        previous.nice,
        previous.system + 3,
        previous.idle + 20,
        previous.iowait + 2,
        previous.irq,
        previous.softirq + 1,
        previous.steal,
        previous.guest,
        previous.guest_nice,
    )
    assert 0.0 < cpu_usage(previous, current) < 1.0


def test_monitor_load_between_samples(tmp_path):
    path = tmp_path / "stat"
    path.write_text("cpu 100 0 0 100 0 0 0 0 0 0\n")
    monitor = CpuMonitor(path)
    assert monitor.update() is True
    first = read_cpu_stats(path)
    path.write_text("cpu 180 0 0 120 0 0 0 0 0 0\n")
    second = read_cpu_stats(path)
    assert monitor.load() == pytest.approx(cpu_usage(first, second))
    assert monitor.previous == first
    assert monitor.current == second


def test_monitor_missing_file_reports_zero(tmp_path):
    monitor = CpuMonitor(tmp_path / "missing")
    assert monitor.update() is False
    assert monitor.load() == 0.0
    assert monitor.current == CpuStats()


def test_format_client_ip_ipv4():
    assert format_client_ip(("127.0.0.1", 1382)) == "127.0.0.1"


def test_format_client_ip_ipv6():
    assert format_client_ip(("::1", 1382, 0, 0)) == "::1"


@pytest.mark.parametrize("address", ["/tmp/pulse.sock", ("not-an-ip", 1), (), None])
def test_format_client_ip_unknown(address):
    with pytest.raises(ValueError):
        format_client_ip(address)


@pytest.mark.parametrize(
    "cmdline, name, expected",
    [
        ("/usr/sbin/mysqld\0--basedir=/usr\0", "mysqld", True),
        ("/usr/sbin/mysqld\0--basedir=/usr\0", "mysql", False),
        ("/usr/sbin/mysqld\0--basedir=/usr\0", "usr", True),
        ("redis-server *:6379", "redis-server", True),
        ("postgres: checkpointer", "postgres", False),
        ("/usr/lib/postgresql/bin/postgres -D /data", "postgres", True),
        ("python /opt/mongod", "mongod", False),
        ("", "mongod", False),
        ("   ", "mongod", False),
    ],
)
def test_cmdline_matches(cmdline, name, expected):
    assert cmdline_matches(cmdline, name) is expected


def test_find_process_id(tmp_path):
    proc = make_proc(
        tmp_path,
        {42: b"/usr/bin/mongod\0--config\0/etc/mongod.conf\0", 7: b"/sbin/init\0"},
    )
    assert find_process_id("mongod", proc) == 42
    assert find_process_id("init", proc) == 7


def test_find_process_id_not_found(tmp_path):
    proc = make_proc(tmp_path, {7: b"/sbin/init\0", 8: b""})
    assert find_process_id("mongod", proc) is None


def test_find_process_id_missing_root(tmp_path):
    assert find_process_id("mongod", tmp_path / "nope") is None


def test_is_database_running(tmp_path):
    proc = make_proc(tmp_path, {99: b"/usr/sbin/mariadbd\0"})
    assert is_database_running(DATABASE_PROCESS_NAMES, proc) is True
    assert is_database_running(["cassandra"], proc) is False


def test_is_database_running_without_databases(tmp_path):
    proc = make_proc(tmp_path, {1: b"/sbin/init\0", 2: b"/usr/bin/bash\0"})
    assert is_database_running(proc_root=proc) is False


def test_parse_available_memory():
    assert parse_available_memory(MEMINFO_TEXT) == 12345678


def test_parse_available_memory_missing():
    assert parse_available_memory("MemTotal: 100 kB\n") == 0


def test_available_memory_from_file(tmp_path):
    path = tmp_path / "meminfo"
    path.write_text(MEMINFO_TEXT)
    assert available_memory(path) == 12345678


def test_total_physical_memory_positive():
    assert total_physical_memory() > 0


def test_uptime_non_negative():
    assert uptime_in_secs() >= 0


def test_disk_space_consistent(tmp_path):
    total = total_disk_space(str(tmp_path))
    assert total > 0
    assert 0 <= available_space(str(tmp_path)) <= total


def test_disk_space_missing_mount(tmp_path):
    missing = str(tmp_path / "no" / "such" / "mount")
    assert available_space(missing) == 0
    assert total_disk_space(missing) == 0
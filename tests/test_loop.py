"""
Tests for the Control Loop module
"""

import pytest
from unittest.mock import Mock, patch

from thermal_watchdog.control.loop import ControlLoop, MonitoredPoint
from thermal_watchdog.control.pid import PIDController, PIDTuning
from thermal_watchdog.errors import (
    ErrorKind,
    FailsafeTrippedError,
    SensorExitError,
    SensorInvalidError,
    SensorKindMismatchError,
    SensorUnsetError
)
from thermal_watchdog.ipmi import IPMICommander
from thermal_watchdog.ipmi.sensors import SensorReader
from thermal_watchdog.metrics.telemetry import TelemetryChannel

TUNING = PIDTuning(k_factor=0.025, i_factor=0.000001, d_factor=0.0)

POINTS = [
    MonitoredPoint("Exhaust Temp", setpoint=40.0, failsafe=60.0, tuning=TUNING),
    MonitoredPoint("Temp", setpoint=55.0, failsafe=65.0, tuning=TUNING),
    MonitoredPoint("Temp", setpoint=55.0, failsafe=65.0, tuning=TUNING),
]


def sdr_output(exhaust, temp1, temp2) -> bytes:
    return (
        f"Fan1 RPM         | 4500 RPM          | ok\n"
        f"Exhaust Temp     | {exhaust} degrees C      | ok\n"
        f"Temp             | {temp1} degrees C      | ok\n"
        f"Temp             | {temp2} degrees C      | ok\n"
    ).encode()


@pytest.fixture
def mock_commander():
    """Create a mock IPMI commander"""
    commander = Mock(spec=IPMICommander)
    commander.list_sensors.return_value = (sdr_output(42, 50, 58), 0)
    return commander


@pytest.fixture
def telemetry():
    """Create a mock telemetry channel"""
    return Mock(spec=TelemetryChannel)


@pytest.fixture
def loop(mock_commander, telemetry):
    """Create a ControlLoop with the three default points"""
    loop = ControlLoop(SensorReader(mock_commander), telemetry)
    for point in POINTS:
        loop.add_control(point)
    return loop


def temperature_reports(telemetry):
    return [c for c in telemetry.report.call_args_list if dict(c[0][0]).keys() == {"temperature"}]


def controller_reports(telemetry):
    return [c for c in telemetry.report.call_args_list if "output" in dict(c[0][0])]


class TestRegistration:
    """Test point registration"""

    def test_add_control(self, loop):
        """Test points, controllers and readings line up"""
        assert [p.name for p, _ in loop.points] == ["Exhaust Temp", "Temp", "Temp"]
        assert [r.name for r in loop.readings] == ["Exhaust Temp", "Temp", "Temp"]
        assert all(isinstance(c, PIDController) for _, c in loop.points)

    def test_controller_tags_include_index(self, loop):
        """Test duplicate names are disambiguated by index"""
        assert loop.points[1][1].tags == (("sensor", "Temp"), ("index", "1"))
        assert loop.points[2][1].tags == (("sensor", "Temp"), ("index", "2"))


class TestStep:
    """Test a full control step"""

    def test_step_returns_max_output(self, loop, telemetry):
        """Test all points below failsafe yield the max controller output"""
        controllers = [c for _, c in loop.points]
        with patch.object(PIDController, "update", autospec=True,
                          side_effect=lambda self, m, e: m - self.setpoint) as mock_update:
            demand = loop.step(1000.0)

        assert demand == pytest.approx(3.0)  # 58 - 55
        assert [c[0][0] for c in mock_update.call_args_list] == controllers
        assert [c[0][1] for c in mock_update.call_args_list] == [42.0, 50.0, 58.0]

    def test_step_end_to_end(self, loop, telemetry):
        """Test real controllers and telemetry for one cycle"""
        expected = max(
            (42 - 40) * 0.025 + (2 * 1000.0) * 0.000001,
            (50 - 55) * 0.025 + 0.0,
            (58 - 55) * 0.025 + (3 * 1000.0) * 0.000001,
        )
        assert loop.step(1000.0) == pytest.approx(expected)
        assert len(temperature_reports(telemetry)) == 3
        assert len(controller_reports(telemetry)) == 3

    def test_temperature_telemetry_tags(self, loop, telemetry):
        """Test raw temperatures are tagged with name and index"""
        loop.step(1000.0)
        reports = temperature_reports(telemetry)
        assert [dict(r[0][0])["temperature"] for r in reports] == [42.0, 50.0, 58.0]
        assert [tuple(r[0][1]) for r in reports] == [
            (("sensor", "Exhaust Temp"), ("index", "0")),
            (("sensor", "Temp"), ("index", "1")),
            (("sensor", "Temp"), ("index", "2")),
        ]

    def test_demand_never_negative(self, loop, mock_commander):
        """Test the aggregate starts from zero"""
        mock_commander.list_sensors.return_value = (sdr_output(30, 40, 40), 0)
        assert loop.step(1000.0) == 0.0

    def test_without_telemetry(self, mock_commander):
        """Test a loop can run without a telemetry channel"""
        loop = ControlLoop(SensorReader(mock_commander))
        loop.add_control(POINTS[0])
        assert loop.step(1000.0) == pytest.approx(0.05 + 0.002)

    def test_empty_loop(self, mock_commander):
        """Test a loop with no points still polls"""
        loop = ControlLoop(SensorReader(mock_commander))
        assert loop.step(1000.0) == 0.0
        mock_commander.list_sensors.assert_called_once()


class TestFailures:
    """Test step failure conditions"""

    def test_failsafe_trips(self, loop, mock_commander):
        """Test temperature above failsafe aborts with structured fields"""
        mock_commander.list_sensors.return_value = (sdr_output(61, 50, 58), 0)

        with pytest.raises(FailsafeTrippedError) as exc_info:
            loop.step(1000.0)

        error = exc_info.value
        assert error.kind is ErrorKind.FAILSAFE_TRIPPED
        assert error.point == "Exhaust Temp"
        assert error.index == 0
        assert error.measured == 61.0
        assert error.threshold == 60.0

    def test_failsafe_at_threshold(self, loop, mock_commander):
        """Test reaching the threshold exactly trips"""
        mock_commander.list_sensors.return_value = (sdr_output(42, 50, 65), 0)
        with pytest.raises(FailsafeTrippedError) as exc_info:
            loop.step(1000.0)
        assert exc_info.value.index == 2

    def test_failsafe_skips_controller(self, loop, mock_commander):
        """Test the tripped point's controller state is untouched"""
        mock_commander.list_sensors.return_value = (sdr_output(42, 50, 58), 0)
        loop.step(1000.0)
        controller = loop.points[2][1]
        before = controller.state.snapshot()

        mock_commander.list_sensors.return_value = (sdr_output(42, 50, 70), 0)
        with patch.object(controller, "update", wraps=controller.update) as mock_update:
            with pytest.raises(FailsafeTrippedError):
                loop.step(1000.0)
            mock_update.assert_not_called()
        assert controller.state.snapshot() == before

    def test_unset_sensor(self, loop, mock_commander):
        """Test a sensor missing from the output"""
        mock_commander.list_sensors.return_value = (b"Exhaust Temp | 42 degrees C\nTemp | 50 degrees C\n", 0)
        with pytest.raises(SensorUnsetError) as exc_info:
            loop.step(1000.0)
        assert exc_info.value.point == "Temp"
        assert exc_info.value.index == 2

    def test_invalid_sensor(self, loop, mock_commander):
        """Test a sensor value that does not parse"""
        mock_commander.list_sensors.return_value = (sdr_output("abc", 50, 58), 0)
        with pytest.raises(SensorInvalidError) as exc_info:
            loop.step(1000.0)
        assert exc_info.value.point == "Exhaust Temp"
        assert exc_info.value.kind is ErrorKind.SENSOR_INVALID

    def test_rpm_sensor(self, mock_commander):
        """Test a point configured on a fan sensor"""
        loop = ControlLoop(SensorReader(mock_commander))
        loop.add_control(MonitoredPoint("Fan1 RPM", 40.0, 60.0, TUNING))
        with pytest.raises(SensorKindMismatchError) as exc_info:
            loop.step(1000.0)
        assert exc_info.value.observed == 4500

    def test_poll_error_propagates(self, loop, mock_commander):
        """Test acquisition errors abort before any point is evaluated"""
        mock_commander.list_sensors.return_value = (sdr_output(42, 50, 58), 3)
        with patch.object(PIDController, "update") as mock_update:
            with pytest.raises(SensorExitError):
                loop.step(1000.0)
            mock_update.assert_not_called()

    def test_error_aborts_remaining_points(self, loop, mock_commander, telemetry):
        """Test points after a failing one are not evaluated"""
        mock_commander.list_sensors.return_value = (sdr_output(42, "abc", 58), 0)
        with pytest.raises(SensorInvalidError):
            loop.step(1000.0)
        assert len(temperature_reports(telemetry)) == 1

import numpy as np
import pytest

from leggedwbc.task import Task
from leggedwbc.wbc_base import ModelInfo, RobotSnapshot, WbcBase

NA = 2
NG = 6 + NA
NC = 2

SETTINGS = """
torqueLimitsTask
{
  (0,0)  30.0
}
frictionConeTask
{
  frictionCoefficient 0.5
}
swingLegTask
{
  kp 100
  kd 10
}
baseHeightTask
{
  kp 40
  kd 4
}
baseAngularTask
{
  kp 60
  kd 6
}
"""


def make_info():
    return ModelInfo(NG, NA, NC)


def make_snapshot(seed=0, **overrides):
    rng = np.random.default_rng(seed)
    m = rng.normal(size=(NG, NG))
    values = dict(
        mass_matrix=m @ m.T + NG * np.eye(NG),
        nonlinear_effects=rng.normal(size=NG),
        contact_jacobian=rng.normal(size=(3 * NC, NG)),
        contact_jacobian_derivative=rng.normal(size=(3 * NC, NG)),
        base_jacobian=rng.normal(size=(6, NG)),
        base_jacobian_derivative=rng.normal(size=(6, NG)),
        q=rng.normal(size=NG) * 0.1,
        v=rng.normal(size=NG),
        base_pose_desired=rng.normal(size=6) * 0.1,
        base_velocity_desired=rng.normal(size=6),
        base_acceleration_desired=rng.normal(size=6),
        foot_positions_measured=rng.normal(size=(NC, 3)),
        foot_velocities_measured=rng.normal(size=(NC, 3)),
        foot_positions_desired=rng.normal(size=(NC, 3)),
        foot_velocities_desired=rng.normal(size=(NC, 3)),
    )
    values.update(overrides)
    return RobotSnapshot(**values)


@pytest.fixture
def settings_file(tmp_path):
    path = tmp_path / "task.info"
    path.write_text(SETTINGS)
    return path


@pytest.fixture
def wbc(settings_file):
    controller = WbcBase(make_info())
    controller.load_tasks_setting(settings_file)
    return controller


def test_decision_vars_match_documented_layout():
    assert WbcBase(ModelInfo(18, 12, 4)).num_decision_vars == 42


def test_model_info_rejects_inconsistent_dimensions():
    with pytest.raises(ValueError):
        ModelInfo(10, 2, 2)


def test_load_settings(wbc):
    assert wbc.friction_coeff == 0.5
    assert (wbc.swing_kp, wbc.swing_kd) == (100.0, 10.0)
    assert (wbc.base_height_kp, wbc.base_height_kd) == (40.0, 4.0)
    assert (wbc.base_angular_kp, wbc.base_angular_kd) == (60.0, 6.0)
    np.testing.assert_allclose(wbc.torque_limits, [30.0])


def test_set_kp_kd():
    controller = WbcBase(make_info())
    controller.set_kp_kd(3.0, 0.5)
    assert (controller.swing_kp, controller.swing_kd) == (3.0, 0.5)


def test_update_returns_empty_and_counts_contacts(wbc):
    result = wbc.update(make_snapshot(), [True, False])
    assert result.size == 0
    assert wbc.num_contacts == 1


def test_update_rejects_wrong_flag_count(wbc):
    with pytest.raises(ValueError):
        wbc.update(make_snapshot(), [True])


def test_update_rejects_wrong_shapes(wbc):
    with pytest.raises(ValueError):
        wbc.update(make_snapshot(q=np.zeros(3)), [True, True])


def test_tasks_require_update(wbc):
    with pytest.raises(RuntimeError):
        wbc.formulate_floating_base_eom_task()


def test_eom_task_uses_upper_triangle_of_mass_matrix(wbc):
    snapshot = make_snapshot()
    upper = np.triu(snapshot.mass_matrix)
    garbage = upper + np.tril(np.full((NG, NG), 99.0), -1)
    nle = snapshot.nonlinear_effects.copy()
    wbc.update(make_snapshot(mass_matrix=garbage), [True, True])
    task = wbc.formulate_floating_base_eom_task()
    m = task.a[:, :NG]
    np.testing.assert_allclose(m, m.T)
    np.testing.assert_allclose(np.triu(m), upper)
    assert task.a.shape == (NG, wbc.num_decision_vars)
    assert task.d.shape[0] == 0


def test_eom_task_encodes_dynamics(wbc):
    snapshot = make_snapshot()
    wbc.update(snapshot, [True, True])
    task = wbc.formulate_floating_base_eom_task()
    rng = np.random.default_rng(5)
    acc, forces, tau = rng.normal(size=NG), rng.normal(size=3 * NC), rng.normal(size=NA)
    x = np.concatenate((acc, forces, tau))
    expected = snapshot.mass_matrix @ acc - snapshot.contact_jacobian.T @ forces
    expected[6:] -= tau
    np.testing.assert_allclose(task.a @ x, expected)
    np.testing.assert_allclose(task.b, -snapshot.nonlinear_effects)


def test_torque_limits_require_settings():
    controller = WbcBase(make_info())
    controller.update(make_snapshot(), [True, True])
    with pytest.raises(RuntimeError):
        controller.formulate_torque_limits_task()


def test_torque_limits_bound_torques(wbc):
    wbc.update(make_snapshot(), [True, True])
    task = wbc.formulate_torque_limits_task()
    assert task.d.shape == (2 * NA, wbc.num_decision_vars)
    np.testing.assert_allclose(task.f, np.full(2 * NA, 30.0))
    inside = np.zeros(wbc.num_decision_vars)
    inside[-NA:] = [29.0, -29.0]
    outside = inside.copy()
    outside[-1] = -31.0
    assert np.all(task.d @ inside <= task.f)
    assert not np.all(task.d @ outside <= task.f)


def test_no_contact_motion_task(wbc):
    snapshot = make_snapshot()
    wbc.update(snapshot, [False, True])
    task = wbc.formulate_no_contact_motion_task()
    assert task.a.shape == (3, wbc.num_decision_vars)
    np.testing.assert_allclose(task.a[:, :NG], snapshot.contact_jacobian[3:6])
    np.testing.assert_allclose(task.b, -snapshot.contact_jacobian_derivative[3:6] @ snapshot.v)
    assert np.all(task.a[:, NG:] == 0)


def test_friction_cone_task(wbc):
    wbc.update(make_snapshot(), [True, False])
    task = wbc.formulate_friction_cone_task()
    assert task.a.shape == (3, wbc.num_decision_vars)
    np.testing.assert_allclose(task.a[:, NG + 3:NG + 6], np.eye(3))
    np.testing.assert_allclose(task.b, np.zeros(3))
    assert task.d.shape == (8, wbc.num_decision_vars)
    np.testing.assert_allclose(task.f, np.zeros(8))

    inside = np.zeros(wbc.num_decision_vars)
    inside[NG:NG + 3] = [1.0, 1.0, 10.0]
    assert np.all(task.d @ inside <= task.f)
    sliding = np.zeros(wbc.num_decision_vars)
    sliding[NG:NG + 3] = [10.0, 0.0, 1.0]
    assert not np.all(task.d @ sliding <= task.f)
    pulling = np.zeros(wbc.num_decision_vars)
    pulling[NG + 2] = -1.0
    assert not np.all(task.d @ pulling <= task.f)


def test_base_height_task_without_error_tracks_desired_acceleration(wbc):
    snapshot = make_snapshot()
    snapshot.base_pose_desired[2] = snapshot.q[2]
    snapshot.base_velocity_desired[2] = snapshot.v[2]
    wbc.update(snapshot, [True, True])
    task = wbc.formulate_base_height_motion_task()
    assert task.a[0, 2] == 1.0
    assert np.count_nonzero(task.a) == 1
    np.testing.assert_allclose(task.b, [snapshot.base_acceleration_desired[2]])


def test_base_height_task_grows_with_height_error(wbc):
    snapshot = make_snapshot(
        q=np.zeros(NG), v=np.zeros(NG),
        base_pose_desired=np.array([0.0, 0.0, 0.1, 0.0, 0.0, 0.0]),
        base_velocity_desired=np.zeros(6), base_acceleration_desired=np.zeros(6),
    )
    wbc.update(snapshot, [True, True])
    np.testing.assert_allclose(wbc.formulate_base_height_motion_task().b, [4.0])


def test_base_angular_task_at_reference(wbc):
    snapshot = make_snapshot(base_jacobian_derivative=np.zeros((6, NG)))
    snapshot.base_pose_desired[3:6] = snapshot.q[3:6]
    snapshot.v[3:6] = 0.0
    snapshot.base_velocity_desired[3:6] = 0.0
    wbc.update(snapshot, [True, True])
    task = wbc.formulate_base_angular_motion_task()
    np.testing.assert_allclose(task.a[:, :NG], snapshot.base_jacobian[3:6])
    np.testing.assert_allclose(task.b, snapshot.base_acceleration_desired[3:6], atol=1e-9)


def test_base_accel_task_stacks_height_and_angular(wbc):
    wbc.update(make_snapshot(), [True, True])
    combined = wbc.formulate_base_accel_task()
    height = wbc.formulate_base_height_motion_task()
    angular = wbc.formulate_base_angular_motion_task()
    assert isinstance(combined, Task)
    np.testing.assert_allclose(combined.a, np.vstack((height.a, angular.a)))
    np.testing.assert_allclose(combined.b, np.concatenate((height.b, angular.b)))


def test_swing_leg_task_without_tracking_error(wbc):
    snapshot = make_snapshot()
    snapshot.foot_positions_desired = snapshot.foot_positions_measured.copy()
    snapshot.foot_velocities_desired = snapshot.foot_velocities_measured.copy()
    wbc.update(snapshot, [True, False])
    task = wbc.formulate_swing_leg_task()
    assert task.a.shape == (3, wbc.num_decision_vars)
    np.testing.assert_allclose(task.a[:, :NG], snapshot.contact_jacobian[3:6])
    np.testing.assert_allclose(task.b, -snapshot.contact_jacobian_derivative[3:6] @ snapshot.v)


def test_swing_leg_task_empty_when_all_feet_in_contact(wbc):
    wbc.update(make_snapshot(), [True, True])
    task = wbc.formulate_swing_leg_task()
    assert task.a.shape == (0, wbc.num_decision_vars)
    assert task.b.size == 0


def test_swing_leg_task_requires_feet(wbc):
    wbc.update(make_snapshot(foot_positions_measured=None), [True, False])
    with pytest.raises(ValueError):
        wbc.formulate_swing_leg_task()


def test_contact_force_task_selects_forces(wbc):
    wbc.update(make_snapshot(), [True, True])
    u = np.arange(3 * NC + NA, dtype=float)
    task = wbc.formulate_contact_force_task(u)
    np.testing.assert_allclose(task.b, u[:3 * NC])
    x = np.zeros(wbc.num_decision_vars)
    x[NG:NG + 3 * NC] = u[:3 * NC]
    np.testing.assert_allclose(task.a @ x, task.b)


def test_contact_force_task_rejects_short_input(wbc):
    wbc.update(make_snapshot(), [True, True])
    with pytest.raises(ValueError):
        wbc.formulate_contact_force_task(np.zeros(2))


def test_compensate_friction(wbc):
    v = np.zeros(NG)
    v[-NA:] = [0.5, -0.0005]
    wbc.update(make_snapshot(v=v), [True, True])
    x = np.ones(wbc.num_decision_vars)
    result = wbc.compensate_friction(x)
    np.testing.assert_allclose(result[-NA:], [1.2, 1.0])
    np.testing.assert_allclose(result[:-NA], x[:-NA])
    assert np.all(x == 1.0)
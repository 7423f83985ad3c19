import math

import numpy as np
import pytest

from leggedwbc.rotations import quat_to_zyx
from leggedwbc.state_estimate import FromTopicStateEstimate, Odometry, StateEstimateBase

NG = 16
NA = 10


def _yaw_quat(angle):
    return np.array([math.cos(angle / 2), 0.0, 0.0, math.sin(angle / 2)])


def _imu(estimator, quat, angular=(0.0, 0.0, 0.0), accel=(0.0, 0.0, 0.0)):
    eye = np.eye(3)
    estimator.update_imu(quat, angular, accel, eye, eye, eye)


def test_initial_state_is_zero():
    est = StateEstimateBase(NG, NA)
    assert est.rbd_state.shape == (2 * NG,)
    assert not est.rbd_state.any()


def test_inconsistent_dimensions_raise():
    with pytest.raises(ValueError):
        StateEstimateBase(15, NA)


def test_joint_states_are_placed():
    est = StateEstimateBase(NG, NA)
    pos = np.arange(NA) * 0.1
    vel = np.arange(NA) * -0.2
    est.update_joint_states(pos, vel)
    np.testing.assert_allclose(est.rbd_state[6:6 + NA], pos)
    np.testing.assert_allclose(est.rbd_state[NG + 6:NG + 6 + NA], vel)
    assert not est.rbd_state[:6].any()


def test_joint_state_size_is_checked():
    est = StateEstimateBase(NG, NA)
    with pytest.raises(ValueError):
        est.update_joint_states(np.zeros(NA - 1), np.zeros(NA))


def test_angular_and_linear_are_placed():
    est = StateEstimateBase(NG, NA)
    est.update_angular([0.1, 0.2, 0.3], [1.0, 2.0, 3.0])
    est.update_linear([4.0, 5.0, 6.0], [7.0, 8.0, 9.0])
    np.testing.assert_allclose(est.rbd_state[0:3], [0.1, 0.2, 0.3])
    np.testing.assert_allclose(est.rbd_state[3:6], [4.0, 5.0, 6.0])
    np.testing.assert_allclose(est.rbd_state[NG:NG + 3], [1.0, 2.0, 3.0])
    np.testing.assert_allclose(est.rbd_state[NG + 3:NG + 6], [7.0, 8.0, 9.0])


def test_imu_yaw_only():
    est = StateEstimateBase(NG, NA)
    _imu(est, _yaw_quat(0.7), angular=(0.0, 0.0, 0.4))
    assert est.rbd_state[0] == pytest.approx(0.7)
    np.testing.assert_allclose(est.rbd_state[1:3], [0.0, 0.0], atol=1e-12)
    np.testing.assert_allclose(est.rbd_state[NG:NG + 3], [0.0, 0.0, 0.4], atol=1e-12)


def test_imu_offset_is_subtracted():
    est = StateEstimateBase(NG, NA)
    est.zyx_offset = np.array([0.2, 0.0, 0.0])
    quat = np.array([0.9, 0.1, 0.2, 0.3])
    quat /= np.linalg.norm(quat)
    _imu(est, quat)
    np.testing.assert_allclose(est.rbd_state[0:3], quat_to_zyx(quat) - est.zyx_offset)


def test_imu_stores_readings():
    est = StateEstimateBase(NG, NA)
    cov = np.arange(9.0).reshape(3, 3)
    est.update_imu(_yaw_quat(0.1), [1, 2, 3], [4, 5, 6], cov, cov, cov)
    np.testing.assert_allclose(est.linear_accel_local, [4, 5, 6])
    np.testing.assert_allclose(est.orientation_covariance, cov)


def test_should_publish_rate_limit():
    est = StateEstimateBase(NG, NA)
    assert est.should_publish(0.0) is False
    assert est.should_publish(1.0) is True
    assert est.should_publish(1.001) is False
    assert est.should_publish(1.01) is True


def test_contact_flags_stored():
    est = StateEstimateBase(NG, NA)
    est.update_contact([1, 0, True, False])
    assert est.contact_flags == (True, False, True, False)


def test_from_topic_copies_odometry():
    est = FromTopicStateEstimate(NG, NA)
    quat = np.array([0.8, 0.1, -0.2, 0.3])
    quat /= np.linalg.norm(quat)
    odom = Odometry(
        stamp=2.0,
        position=[1.0, 2.0, 3.0],
        orientation=quat,
        linear=[0.1, 0.2, 0.3],
        angular=[0.4, 0.5, 0.6],
    )
    est.receive(odom)
    rbd = est.update()
    np.testing.assert_allclose(rbd[0:3], quat_to_zyx(quat))
    np.testing.assert_allclose(rbd[3:6], [1.0, 2.0, 3.0])
    np.testing.assert_allclose(rbd[NG:NG + 3], [0.4, 0.5, 0.6])
    np.testing.assert_allclose(rbd[NG + 3:NG + 6], [0.1, 0.2, 0.3])


def test_from_topic_ignores_imu():
    est = FromTopicStateEstimate(NG, NA)
    _imu(est, _yaw_quat(1.0), angular=(1.0, 1.0, 1.0))
    assert not est.rbd_state.any()


def test_from_topic_publishes():
    est = FromTopicStateEstimate(NG, NA)
    published = []
    est.publisher = published.append
    odom = Odometry(stamp=1.0, position=[1.0, 0.0, 0.0])
    est.receive(odom)
    est.update()
    est.update()
    assert published == [odom]


def test_odometry_validates_sizes():
    with pytest.raises(ValueError):
        Odometry(position=[1.0, 2.0])
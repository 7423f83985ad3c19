import numpy as np
import pytest

from leggedwbc.task import Task, concatenate_matrices, concatenate_vectors


def _task(rows, cols, value):
    return Task(
        np.full((rows, cols), value),
        np.full(rows, value),
        np.full((rows, cols), value),
        np.full(rows, value),
    )


def test_default_task_is_empty():
    task = Task()
    assert task.a.shape == (0, 0)
    assert task.b.shape == (0,)


def test_empty_has_columns():
    task = Task.empty(5)
    assert task.a.shape == (0, 5)
    assert task.d.shape == (0, 5)
    assert task.b.size == 0 and task.f.size == 0


def test_add_stacks_rows_in_order():
    t1 = _task(2, 3, 1.0)
    t2 = _task(1, 3, 2.0)
    total = t1 + t2
    assert total.a.shape == (3, 3)
    np.testing.assert_array_equal(total.a[:2], t1.a)
    np.testing.assert_array_equal(total.a[2:], t2.a)
    np.testing.assert_array_equal(total.b, np.concatenate((t1.b, t2.b)))
    np.testing.assert_array_equal(total.f, np.concatenate((t1.f, t2.f)))


def test_add_skips_matrices_without_columns():
    eq_only = Task(np.ones((2, 4)), np.ones(2), np.zeros((0, 0)), np.zeros(0))
    ineq_only = Task(np.zeros((0, 0)), np.zeros(0), np.ones((3, 4)), np.ones(3))
    total = eq_only + ineq_only
    assert total.a.shape == (2, 4)
    assert total.d.shape == (3, 4)


def test_add_with_empty_keeps_columns():
    total = Task() + Task.empty(6)
    assert total.a.shape == (0, 6)


def test_add_column_mismatch():
    with pytest.raises(ValueError):
        _task(1, 3, 1.0) + _task(1, 4, 1.0)


def test_mul_scales_everything():
    task = _task(2, 3, 1.5)
    scaled = task * 2.0
    np.testing.assert_allclose(scaled.a, task.a * 2.0)
    np.testing.assert_allclose(scaled.b, task.b * 2.0)
    np.testing.assert_allclose(scaled.d, task.d * 2.0)
    np.testing.assert_allclose(scaled.f, task.f * 2.0)
    np.testing.assert_allclose((2.0 * task).a, scaled.a)


def test_mul_does_not_modify_original():
    task = _task(1, 2, 3.0)
    _ = task * 0.0
    np.testing.assert_array_equal(task.a, np.full((1, 2), 3.0))


def test_concatenate_matrices_passthrough():
    m = np.arange(6.0).reshape(2, 3)
    assert concatenate_matrices(np.zeros((0, 0)), m) is not None
    np.testing.assert_array_equal(concatenate_matrices(np.zeros((0, 0)), m), m)
    np.testing.assert_array_equal(concatenate_matrices(m, np.zeros((0, 0))), m)


def test_concatenate_vectors():
    v = concatenate_vectors(np.array([1.0, 2.0]), np.array([3.0]))
    np.testing.assert_array_equal(v, [1.0, 2.0, 3.0])
    np.testing.assert_array_equal(concatenate_vectors(np.zeros(0), np.array([4.0])), [4.0])


def test_matrix_must_be_2d():
    with pytest.raises(ValueError):
        Task(np.ones(3), np.ones(1), np.zeros((0, 3)), np.zeros(0))
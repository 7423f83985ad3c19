# leggedwbc

Building blocks for controlling a walking robot: whole-body control formulated
as quadratic programs, base state estimation, target trajectory generation and
a small simulated hardware layer. Everything works on plain NumPy arrays; the
quadratic programs are solved with SciPy.

## What is inside

- `leggedwbc.task` — `Task`, a linear task made of equalities `a x - b = w`
  and inequalities `d x - f <= v`. Tasks stack row-wise with `+` and scale
  with `*`; `Task.empty(n)` is a task with no rows over `n` decision
  variables. `concatenate_matrices` and `concatenate_vectors` do the stacking.
- `leggedwbc.hoqp` — `HoQp`, one level of a hierarchical optimisation. Each
  level is solved in the null space of the equality tasks of the levels
  above it, and keeps their inequalities satisfied up to their slacks. Its
  properties are `solutions`, `stacked_z`, `stacked_tasks`,
  `stacked_slack_solutions` and `num_stacked_slack_vars`. `solve_qp` solves a
  single problem `min 0.5 x'Hx + c'x` subject to `D x <= f` and raises
  `QpError` when no feasible point is found.
- `leggedwbc.wbc_base` — `ModelInfo` (dimensions of the floating-base
  model), `RobotSnapshot` (mass matrix, nonlinear effects, contact and base
  Jacobians with their time derivatives, `q`, `v`, the desired base motion
  and optional foot positions and velocities) and `WbcBase`, which turns a
  snapshot into the whole-body tasks: floating-base equations of motion,
  torque limits, friction pyramids, no motion of stance feet, base height and
  base orientation tracking, swing-leg tracking and contact force tracking.
  The decision variables are `[generalized accelerations, contact forces,
  joint torques]`. `compensate_friction` adds a Coulomb friction torque of
  0.2 to every joint moving faster than 0.001.
- `leggedwbc.weighted_wbc` — `WeightedWbc` keeps the equations of motion,
  torque limits and friction cones as hard constraints and minimises a
  weighted sum of swing-leg, base-acceleration and contact-force tracking.
  When the problem is not solved it logs an error and returns the previous
  solution, if there is one.
- `leggedwbc.hierarchical_wbc` — `HierarchicalWbc` solves the tasks in three
  priority levels with `HoQp`: physics and stance feet first, base motion
  second, contact forces (weight 0.1) and swing legs last.
- `leggedwbc.trajectories` — `SystemObservation`, `TargetTrajectories` and
  `TrajectorySettings` (read with `load_trajectory_settings`), plus
  `goal_to_target_trajectories`, `cmd_vel_to_target_trajectories`,
  `target_pose_to_target_trajectories`, `estimate_time_to_target` and
  `goal_from_pose`, which turns a position and a `(w, x, y, z)` quaternion
  into a goal `[x, y, z, yaw, pitch, roll]`.
- `leggedwbc.safety` — `SafetyChecker`, which rejects an observation whose
  base roll lies outside minus to plus ninety degrees.
- `leggedwbc.state_estimate` — `Odometry`, `StateEstimateBase` (rigid-body
  state from joint, contact and IMU readings) and `FromTopicStateEstimate`,
  which copies the latest received `Odometry` into the state. An optional
  `publisher` callable receives odometry at most 200 times per second of
  message time.
- `leggedwbc.kalman` — `KalmanFilterEstimate`, a linear Kalman filter that
  fuses IMU acceleration with foot kinematics into base position and
  velocity, with `KalmanSettings` read by `load_kalman_settings`.
- `leggedwbc.rotations` — ZYX Euler angle helpers, quaternion conversion,
  rotation error and `shortest_angular_distance`.
- `leggedwbc.config` — a reader for brace-structured `.info` settings files
  (`parse_info`, `load_info_file`, `get_value`, `get_vector`).
- `leggedwbc.hwsim` — `LeggedHWSim`, a simulated joint, IMU and contact
  layer. Joints take hybrid commands `(pos_des, vel_des, kp, kd, ff)` that
  become the effort `kp (pos_des - q) + kd (vel_des - dq) + ff`, optionally
  delayed by a fixed time.

## Stacking tasks

```python
import numpy as np

from leggedwbc.hoqp import HoQp
from leggedwbc.task import Task

n = 4
limits = Task(np.zeros((0, n)), np.zeros(0), np.eye(n), np.full(n, 5.0))
balance = Task(np.ones((2, n)), np.ones(2), np.zeros((0, n)), np.zeros(0))

top = HoQp(limits + balance)
below = HoQp(Task(np.eye(n), np.zeros(n), np.zeros((0, n)), np.zeros(0)), top)
x = below.solutions
```

The lower level uses only the freedom the upper level leaves.

## Whole-body control

```python
from leggedwbc.wbc_base import ModelInfo
from leggedwbc.weighted_wbc import WeightedWbc

info = ModelInfo(generalized_coordinates_num=16, actuated_dof_num=10, num_three_dof_contacts=4)
wbc = WeightedWbc(info)
wbc.load_tasks_setting("task.info")
wbc.input_desired = planner_input          # desired contact forces first
x = wbc.update(snapshot, contact_flags)    # snapshot: a RobotSnapshot
torques = x[-info.actuated_dof_num:]
```

`HierarchicalWbc` is used the same way.

## Settings files

Gains, torque limits, friction coefficient, task weights and filter noise are
read from `.info` files. `WbcBase.load_tasks_setting` reads
`torqueLimitsTask` (a vector of `(i,0)` entries, one per joint of a leg),
`frictionConeTask.frictionCoefficient` and `kp`/`kd` of `swingLegTask`,
`baseHeightTask` and `baseAngularTask`; `WeightedWbc.load_tasks_setting` also
reads `weight.swingLeg`, `weight.baseAccel` and `weight.contactForce`;
`load_kalman_settings` reads the `kalmanFilter` block.

```
frictionConeTask
{
  frictionCoefficient 0.7
}
torqueLimitsTask
{
  (0,0) 80.0
  (1,0) 80.0
}
```

## What the package does not do

- It does not compute robot dynamics or kinematics: mass matrix, Jacobians,
  foot positions and the desired base motion are supplied by the caller in a
  `RobotSnapshot`, and the Kalman filter takes foot positions and velocities
  as arguments.
- It runs no model predictive controller, no messaging node and no command;
  trajectories are returned as `TargetTrajectories` for the caller to pass
  on, and odometry goes only to a `publisher` callable if one is set.
- The Kalman filter does not correct itself from external odometry.
- `LeggedHWSim` simulates no physics; joint positions, IMU motion and link
  contacts are fed to it by the caller.

## Running the tests

Install the `test` extra and run `pytest`.
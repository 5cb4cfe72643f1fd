"""Portfolio state models, macro gate and the per-period stepper."""

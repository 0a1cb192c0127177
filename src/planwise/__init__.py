"""Planwise -- 任务图与自动化引擎

core: 领域模型、异常、配置、SQLite 记录存储
tasks: TaskService（任务 CRUD + 依赖/子任务图）、TimeTracker（工时统计）
automation: RuleService、TriggerManager、参考规则求值器与动作分发
"""

__version__ = "0.1.0"

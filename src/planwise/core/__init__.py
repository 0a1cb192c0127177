"""Planwise Core -- 领域模型、异常体系、配置与持久化"""

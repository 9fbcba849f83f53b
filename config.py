"""
Configuration module for the orchestration engine.
Loads settings from environment variables or .env file.
编排引擎配置模块。
从环境变量或 .env 文件加载所有配置项。
"""

import os
from dotenv import load_dotenv

load_dotenv()  # 自动读取项目根目录的 .env 文件（若存在），优先级低于系统环境变量

# --- Logging ---
# --- 日志 ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()  # CLI 默认日志级别，-v 时强制 DEBUG

# --- Dependency Graph Limits ---
# --- 依赖图规模限制 ---
# Caller-side latency policy: the planner refuses new edges once a cycle
# pre-check has to walk more than this many tasks. 0 disables the limit.
# 调用方的延迟策略：环检测遍历的任务数超过该值时拒绝新增依赖边。0 表示不限制。
MAX_TASK_GRAPH_NODES = int(os.getenv("MAX_TASK_GRAPH_NODES", "10000"))

# --- Automatic Status Changes ---
# --- 自动状态变更 ---
AUTO_BLOCK_ON_DEPENDENCY = os.getenv("AUTO_BLOCK_ON_DEPENDENCY", "true").lower() == "true"  # 新增未完成的前置依赖时自动置为 blocked
AUTO_UNBLOCK_ON_REMOVAL = os.getenv("AUTO_UNBLOCK_ON_REMOVAL", "true").lower() == "true"    # 移除最后一个未完成依赖时自动恢复为 ready

"""
现有技术检索核心包：检索适配器、提示词、候选池、对比排序、引证扩展与任务调度。
"""

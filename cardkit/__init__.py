"""cardkit · 博客知识卡片服务（浏览量计数 / Markdown 预览 / 卡片截图）"""

__version__ = "0.3.0"

"""tweet-hub：按作者增量抓取推文 -> LLM 分类过滤 -> 入库 -> 实时推送"""

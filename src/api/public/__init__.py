"""公共 API 路由"""

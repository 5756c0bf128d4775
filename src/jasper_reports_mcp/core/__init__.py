"""Core report execution logic: output formats, parameter coercion, errors and the engine.

This module is framework-agnostic. It has no dependency on MCP, FastMCP,
or any server framework; the MCP server in ``jasper_reports_mcp.server``
is a thin layer over ReportExecutionEngine.
"""

"""JasperReports MCP Server.

Run JasperReports Server reports from your AI, synchronously or as tracked
async jobs, with one consistent error shape for anything that goes wrong.
"""

__version__ = "0.1.0"

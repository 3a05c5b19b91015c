"""
Opcache Exporter - PHP opcache statistics over FastCGI as Prometheus metrics
"""

VERSION = "0.1.0"

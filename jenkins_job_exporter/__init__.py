""" A prometheus exporter for the recent build history of selected jenkins jobs.

Polls jenkins on an interval, reduces the last N builds of every configured
job to a few counters, and exposes them for prometheus to scrape.
"""

__version__ = '0.1.0'

"""Engine configuration (env/ConfigMap driven).

Configuration tunes limits and logging only; the rule set itself is fixed.
"""

"""
Risk forecasting layer.

  - ``engine``  — pure 7/14/30-day forecasts per risk type
"""

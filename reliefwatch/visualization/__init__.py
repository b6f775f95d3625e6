"""Map rendering: visualizer, map backend, timers and the dashboard."""

"""
alerts — The alert working set and everything derived from it.

Sub-modules:
    models           — Alert, Severity, AlertType, Campaign
    display          — severity colours, marker sizes, pulse timing, icons
    filters          — type/severity selection
    detector         — new-alert detection strategies
    campaign_client  — emergency campaign auto-create client
    escalation       — severe new alerts → campaigns, with retry queue
    store            — refresh pipeline, polling & demo mode
    stats            — Active Disasters panel figures
"""

"""
Delay Repay rules package.

Modules of interest:
- models: Schemes, bands, requests and evaluation records.
- bands: Compensation band resolution per scheme.
- restrictions: Ticket restriction codes against peak windows.
- sleeper: Seated-fare cap for sleeper tickets.
- apportioner: Per-segment evaluation of multi-TOC journeys.
- engine: Composition of the above into one decision.

Everything here is free of writes; reference data is read through the
ports defined in app.ports.
"""

"""
Automation module for Tatkal ticket booking

Architecture Overview:
======================

    Caller (CLI / API layer)
                    │
                    ▼
    ┌───────────────────────────────────────────────────┐
    │            AutomationService                      │ ← Control surface
    │  (RunGuard + EventChannel + LogBuffer)            │
    └───────────────────┬───────────────────────────────┘
                        │ one per run
                        ▼
    ┌───────────────────────────────────────────────────┐
    │            BookingWorkflow                        │ ← Orchestrator loop
    │  (BookingStateMachine + CancellationToken)        │
    └───────────────────┬───────────────────────────────┘
                        │ handler per active state
                        ▼
    ┌───────────────────────────────────────────────────┐
    │            BookingSteps                           │ ← Page work
    │  (RetryExecutor + SelectorCatalog)                │
    └─────────┬──────────────────┬──────────────────────┘
              │                  │
              ▼                  ▼
    ┌───────────────────┐  ┌─────────────────────────────┐
    │   BrowserPort     │  │  CaptchaService             │
    │ (PlaywrightBrowser│  │ (EasyOCR/Tesseract/Manual)  │
    └───────────────────┘  └─────────────────────────────┘

    Supporting Components:
    ├── FormHelpers      ← Selector chains and the probe/require interpreter
    ├── ResultDetector   ← CAPTCHA outcome and logged-in detection
    ├── SessionStore     ← Cookie reuse between runs
    └── RecoveryStore    ← Checkpoint after every state change

Usage Patterns:
===============

    service = AutomationService()
    result = await service.start(BookingRequest.from_dict(data))
    events = service.subscribe()
    ...
    final_state = await service.wait()

Modules are imported directly (``from railbooker.services.automation.automation_service
import AutomationService``); this package does not re-export them because the
captcha and session services import the browser port from here.
"""

"""
Provisioning services

Identity sanitizing, address allocation, config store, profile registry,
bulk orchestration and e-mail notification.
"""

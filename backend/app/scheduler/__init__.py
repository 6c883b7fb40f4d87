# -*- coding: utf-8 -*-
# backend/app/scheduler/__init__.py
# Фоновые задачи: каждая экспортирует run_once() для SchedulerService.

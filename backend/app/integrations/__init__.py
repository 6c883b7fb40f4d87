# -*- coding: utf-8 -*-
# backend/app/integrations/__init__.py
# Клиенты внешних провайдеров: 5sim (номера), SMM-панель, Flutterwave (платежи).

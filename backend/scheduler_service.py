"""
Scheduler das tarefas automáticas Rental Energia
- Lembrete de checklists vencidos (de hora em hora)
"""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from config import SCHEDULER_TIMEZONE

logger = logging.getLogger("scheduler")


class TaskScheduler:
    """Gerenciador de tarefas agendadas"""

    def __init__(self):
        self.scheduler = AsyncIOScheduler(timezone=SCHEDULER_TIMEZONE)

    def start(self):
        """Inicia o scheduler com todas as tarefas"""
        self.scheduler.add_job(
            self.remind_overdue_checklists,
            CronTrigger(minute=0),
            id="overdue_checklists",
            name="Lembrete de checklists vencidos",
            replace_existing=True
        )

        self.scheduler.start()
        logger.info("Scheduler iniciado")

    def stop(self):
        """Para o scheduler"""
        if self.scheduler.running:
            self.scheduler.shutdown()
            logger.info("Scheduler parado")

    # ==================== TAREFAS AGENDADAS ====================

    async def remind_overdue_checklists(self):
        from services.tasks import notify_overdue_checklists

        try:
            sent = await notify_overdue_checklists()
            logger.info(f"[SCHEDULER] {sent} lembrete(s) de checklist vencido enviados")
        except Exception as e:
            logger.error(f"[SCHEDULER] erro nos lembretes de checklist: {e}")


task_scheduler = TaskScheduler()
